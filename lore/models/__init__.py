"""lore model implementations.

Concrete ModelProtocol implementations used by the reflection pipeline.
"""

from __future__ import annotations

from lore.models.anthropic import AnthropicModel
from lore.models.auto import auto_configure_model
from lore.models.ollama import OllamaModel
from lore.models.openai import OpenAIModel

__all__ = ["AnthropicModel", "OllamaModel", "OpenAIModel", "auto_configure_model"]
