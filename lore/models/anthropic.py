"""Anthropic messages API backend for reflection.

``anthropic`` is an optional extra. It is imported when an AnthropicModel
is built, so ``lore.models`` stays importable without it.
"""

from __future__ import annotations

import os
from typing import Any, Optional

from lore.models.pricing import estimate_cost
from lore.protocols import (
    ModelCapabilities,
    ModelError,
    ModelMessage,
    ModelResponse,
    check_response_format,
)

# SDK exception name -> (error class, label)
_SDK_ERRORS = (
    ("RateLimitError", "rate_limit", "rate limited"),
    ("AuthenticationError", "auth", "auth failed"),
    ("APITimeoutError", "timeout", "timeout"),
)


class AnthropicModelError(ModelError):
    """An Anthropic call failed."""


class AnthropicModel:
    """Claude models through the messages API.

    ``pip install lore[anthropic]``, then::

        model = AnthropicModel()  # key from CLAUDE_API_KEY or ANTHROPIC_API_KEY
        model.generate([ModelMessage("user", "...")], response_format="json")

    There is no JSON switch on this API, so JSON output depends on the
    system prompt asking for it.
    """

    def __init__(
        self,
        model_id: str = "claude-haiku-4-5-20251001",
        *,
        api_key: Optional[str] = None,
        max_tokens: int = 4096,
        timeout: float = 60.0,
    ) -> None:
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "AnthropicModel needs the 'anthropic' package: pip install lore[anthropic]"
            ) from None

        key = api_key or os.environ.get("CLAUDE_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ValueError("No Anthropic API key: pass api_key= or set ANTHROPIC_API_KEY")

        self._model_id = model_id
        self._max_tokens = max_tokens
        self._client = anthropic.Anthropic(api_key=key, timeout=timeout)

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(
            model_id=self._model_id,
            provider="anthropic",
            context_window=200_000,
            max_output_tokens=self._max_tokens,
            supports_json_mode=False,
        )

    def generate(
        self,
        messages: list[ModelMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system: Optional[str] = None,
        response_format: str = "text",
    ) -> ModelResponse:
        check_response_format(response_format)
        turns, system_text = self._split_system(messages, system)
        request: dict[str, Any] = {
            "model": self._model_id,
            "messages": turns,
            "max_tokens": max_tokens or self._max_tokens,
        }
        if system_text:
            request["system"] = system_text
        if temperature is not None:
            request["temperature"] = temperature

        try:
            response = self._client.messages.create(**request)
        except Exception as exc:
            raise self._classify_error(exc, "Anthropic API error") from exc

        return self._to_model_response(response)

    @staticmethod
    def _split_system(
        messages: list[ModelMessage], system: Optional[str]
    ) -> tuple[list[dict[str, Any]], Optional[str]]:
        """Fold system-role messages into the top-level system text."""
        system_parts = [system] if system else []
        turns: list[dict[str, Any]] = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            else:
                turns.append({"role": msg.role, "content": msg.content})
        return turns, "\n\n".join(system_parts) or None

    @staticmethod
    def _classify_error(exc: Exception, prefix: str) -> AnthropicModelError:
        """Map an SDK exception onto rate_limit, auth, timeout, server or unknown."""
        try:
            import anthropic
        except ImportError:
            return AnthropicModelError("unknown", f"{prefix}: {exc}")

        for name, error_class, label in _SDK_ERRORS:
            exc_type = getattr(anthropic, name, None)
            if isinstance(exc_type, type) and isinstance(exc, exc_type):
                return AnthropicModelError(error_class, f"{prefix}: {label}: {exc}")

        status_error = getattr(anthropic, "APIStatusError", None)
        if isinstance(status_error, type) and isinstance(exc, status_error):
            code = getattr(exc, "status_code", "?")
            return AnthropicModelError("server", f"{prefix}: HTTP {code}: {exc}")

        return AnthropicModelError("unknown", f"{prefix}: {exc}")

    def _to_model_response(self, response: Any) -> ModelResponse:
        text = "".join(block.text for block in response.content if block.type == "text")
        usage = {}
        if response.usage:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            }
        model_id = response.model or self._model_id
        return ModelResponse(
            content=text,
            usage=usage,
            stop_reason=response.stop_reason,
            model_id=model_id,
            estimated_cost=estimate_cost(model_id, usage),
        )
