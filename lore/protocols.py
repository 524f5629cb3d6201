"""
lore Protocol Definitions
=========================

Interface contracts between lore and the text-generation model it calls
during reflection.

Error handling philosophy:
- Invalid arguments raise ValueError
- Storage failures raise StorageError
- Model transport/API failures raise ModelError (provider-specific subclass)
  and are never swallowed by the reflection pipeline
- Best-effort reads and telemetry writes log and degrade instead of raising
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable

# =============================================================================
# ERRORS
# =============================================================================


class LoreError(Exception):
    """Base for all lore errors."""

    pass


class StorageError(LoreError):
    """Raised by the store on storage failures."""

    pass


class ModelError(LoreError):
    """Raised when a model provider reports an error.

    ``error_class`` is one of: rate_limit, auth, timeout, server, unknown.
    """

    def __init__(self, error_class: str, message: str) -> None:
        super().__init__(message)
        self.error_class = error_class


# =============================================================================
# MODEL TYPES
# =============================================================================

# Output modes a caller can request from generate()
RESPONSE_FORMATS = frozenset({"text", "json"})


def check_response_format(response_format: str) -> str:
    """Return ``response_format`` if it is a known output mode, else raise ValueError."""
    if response_format not in RESPONSE_FORMATS:
        raise ValueError(
            f"Invalid response_format: {response_format!r}. "
            f"Must be one of: {', '.join(sorted(RESPONSE_FORMATS))}"
        )
    return response_format


@dataclass
class ModelCapabilities:
    """What a model implementation can do."""

    model_id: str
    provider: str  # "anthropic", "openai", "ollama"
    context_window: int
    max_output_tokens: int = 4096
    supports_json_mode: bool = False


@dataclass
class ModelMessage:
    """A message in a conversation."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class ModelResponse:
    """Complete response from a model."""

    content: str
    usage: dict[str, int] = field(default_factory=dict)
    stop_reason: Optional[str] = None
    model_id: Optional[str] = None
    estimated_cost: float = 0.0  # USD, derived from usage

    @property
    def input_tokens(self) -> int:
        return self.usage.get("input_tokens", 0)

    @property
    def output_tokens(self) -> int:
        return self.usage.get("output_tokens", 0)


# =============================================================================
# MODEL PROTOCOL
# =============================================================================


@runtime_checkable
class ModelProtocol(Protocol):
    """Interface for the text-generation service.

    Implementations: AnthropicModel, OpenAIModel, OllamaModel.
    """

    @property
    def model_id(self) -> str:
        """Identifier (e.g., 'claude-haiku-4-5-20251001', 'llama3.2:latest')."""
        ...

    @property
    def capabilities(self) -> ModelCapabilities:
        """What this model can do."""
        ...

    def generate(
        self,
        messages: list[ModelMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system: Optional[str] = None,
        response_format: str = "text",
    ) -> ModelResponse:
        """Generate a complete response.

        ``response_format`` is "text" or "json". Providers with a native
        JSON mode enable it; the rest rely on the prompt.
        """
        ...
