"""Auto-configure a model from environment variables.

Provides a zero-config way to get a synthesis model for the reflection
pipeline and CLI usage (e.g. ``lore reflect``).
"""

from __future__ import annotations

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

# Cheap/fast defaults; reflection is a once-per-cycle call
_PROVIDER_DEFAULTS = {
    "anthropic": "claude-haiku-4-5-20251001",
    "openai": "gpt-4o-mini",
    "ollama": "llama3.2:latest",
}


def auto_configure_model() -> Optional[object]:
    """Auto-detect and create a model from environment variables.

    Detection priority (when ``LORE_MODEL_PROVIDER`` is not set):
    1. ``CLAUDE_API_KEY`` or ``ANTHROPIC_API_KEY`` → Anthropic
    2. ``OPENAI_API_KEY`` → OpenAI
    3. No key → ``None``

    Environment variables:
        LORE_MODEL_PROVIDER: Force a specific provider (anthropic, openai, ollama).
        LORE_MODEL: Override the default model name for the chosen provider.
        LORE_OLLAMA_URL: Base URL of the Ollama server.

    Returns:
        A ModelProtocol instance, or None if no provider is available.
    """
    forced_provider = os.environ.get("LORE_MODEL_PROVIDER", "").lower().strip()
    model_override = os.environ.get("LORE_MODEL", "").strip() or None

    if forced_provider:
        provider = forced_provider
    elif os.environ.get("ANTHROPIC_API_KEY") or os.environ.get("CLAUDE_API_KEY"):
        provider = "anthropic"
    elif os.environ.get("OPENAI_API_KEY"):
        provider = "openai"
    else:
        return None

    model_id = model_override or _PROVIDER_DEFAULTS.get(provider)

    if provider == "anthropic":
        from lore.models.anthropic import AnthropicModel

        model = AnthropicModel(model_id=model_id)
        logger.info("Auto-configured AnthropicModel (model=%s)", model_id)
        return model

    if provider == "openai":
        from lore.models.openai import OpenAIModel

        model = OpenAIModel(model_id=model_id)
        logger.info("Auto-configured OpenAIModel (model=%s)", model_id)
        return model

    if provider == "ollama":
        from lore.models.ollama import OllamaModel

        base_url = os.environ.get("LORE_OLLAMA_URL", "").strip() or "http://localhost:11434"
        model = OllamaModel(model_id=model_id, base_url=base_url)
        logger.info("Auto-configured OllamaModel (model=%s)", model_id)
        return model

    logger.warning("Unknown model provider '%s', skipping auto-configuration", provider)
    return None
