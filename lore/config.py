"""Tunable constants for the knowledge lifecycle, context assembly, and reflection.

Each concern gets a dataclass with a module-level default instance.
Callers that need different numbers pass their own instance.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


# =============================================================================
# Knowledge lifecycle
# =============================================================================


@dataclass(frozen=True)
class KnowledgePolicy:
    """Confidence accounting for knowledge records.

    Reinforcement closes ``reinforce_rate`` of the remaining gap to 1.0,
    so confidence approaches but never reaches 1.0 through evidence alone.
    """

    initial_confidence: float = 0.3
    reinforce_rate: float = 0.1
    contradiction_penalty: float = 0.15
    confidence_floor: float = 0.1
    decay_factor: float = 0.9
    stale_days: int = 14
    decay_interval_days: int = 1  # At most one decay step per record per interval
    prune_threshold: float = 0.1
    retrieval_min_confidence: float = 0.2
    strategy_min_confidence: float = 0.4


DEFAULT_KNOWLEDGE_POLICY = KnowledgePolicy()


# =============================================================================
# Context assembly
# =============================================================================


@dataclass(frozen=True)
class ContextLimits:
    """Character limits for each section of the prompt context block."""

    max_context_chars: int = 4000
    max_digest_chars: int = 2500
    max_knowledge_chars: int = 800
    max_learnings_chars: int = 700
    recent_learnings: int = 3
    max_topics: int = 3
    max_strategies: int = 3


DEFAULT_CONTEXT_LIMITS = ContextLimits()


# =============================================================================
# Reflection
# =============================================================================


@dataclass
class ReflectionConfig:
    """Configuration for one reflection pass."""

    temperature: float = 0.4
    max_tokens: int = 1500
    recent_reflections: int = 4
    outcome_limit: int = 10
    outcome_window_hours: int = 1
    agent_limit: int = 5
    agent_window_hours: int = 2
    max_updates: int = 5
    max_summary_chars: int = 500
    max_key_chars: int = 200
    max_content_chars: int = 500
    usage_layer: str = "memory_reflect"

    @classmethod
    def from_env(cls) -> "ReflectionConfig":
        """Build a config, honoring LORE_REFLECT_TEMPERATURE / LORE_REFLECT_MAX_TOKENS."""
        config = cls()
        raw_temp = os.environ.get("LORE_REFLECT_TEMPERATURE", "").strip()
        if raw_temp:
            try:
                config.temperature = float(raw_temp)
            except ValueError:
                logger.warning("Ignoring invalid LORE_REFLECT_TEMPERATURE=%r", raw_temp)
        raw_tokens = os.environ.get("LORE_REFLECT_MAX_TOKENS", "").strip()
        if raw_tokens:
            try:
                config.max_tokens = int(raw_tokens)
            except ValueError:
                logger.warning("Ignoring invalid LORE_REFLECT_MAX_TOKENS=%r", raw_tokens)
        return config


DEFAULT_REFLECTION_CONFIG = ReflectionConfig()
