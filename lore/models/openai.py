"""OpenAI chat completions backend for reflection.

``openai`` is an optional extra, imported when an OpenAIModel is built.
"""

from __future__ import annotations

import logging
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

logger = logging.getLogger(__name__)

# SDK exception name -> (error class, label)
_SDK_ERRORS = (
    ("RateLimitError", "rate_limit", "rate limited"),
    ("AuthenticationError", "auth", "auth failed"),
    ("APITimeoutError", "timeout", "timeout"),
)


class OpenAIModelError(ModelError):
    """An OpenAI call failed."""


class OpenAIModel:
    """OpenAI chat models, with native JSON mode.

    ``pip install lore[openai]`` and set ``OPENAI_API_KEY``.
    ``response_format="json"`` maps to ``{"type": "json_object"}``.
    """

    def __init__(
        self,
        model_id: str = "gpt-4o-mini",
        *,
        api_key: Optional[str] = None,
        max_tokens: int = 4096,
        timeout: float = 60.0,
    ) -> None:
        try:
            import openai
        except ImportError:
            raise ImportError(
                "OpenAIModel needs the 'openai' package: pip install lore[openai]"
            ) from None

        key = api_key or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError("No OpenAI API key: pass api_key= or set OPENAI_API_KEY")

        self._model_id = model_id
        self._max_tokens = max_tokens
        self._client = openai.OpenAI(api_key=key, timeout=timeout)

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(
            model_id=self._model_id,
            provider="openai",
            context_window=128_000,
            max_output_tokens=self._max_tokens,
            supports_json_mode=True,
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
        chat = [{"role": "system", "content": system}] if system else []
        chat.extend({"role": m.role, "content": m.content} for m in messages)

        request: dict[str, Any] = {
            "model": self._model_id,
            "messages": chat,
            "max_tokens": max_tokens or self._max_tokens,
        }
        if temperature is not None:
            request["temperature"] = temperature
        if response_format == "json":
            request["response_format"] = {"type": "json_object"}

        try:
            completion = self._client.chat.completions.create(**request)
        except Exception as exc:
            logger.debug("OpenAI completion failed: %s", exc, exc_info=True)
            raise self._classify_error(exc, "OpenAI API error") from exc

        return self._to_model_response(completion)

    def _to_model_response(self, completion: Any) -> ModelResponse:
        choice = completion.choices[0]
        usage = {}
        if completion.usage:
            usage = {
                "input_tokens": completion.usage.prompt_tokens,
                "output_tokens": completion.usage.completion_tokens,
            }
        model_id = completion.model or self._model_id
        return ModelResponse(
            content=choice.message.content or "",
            usage=usage,
            stop_reason=choice.finish_reason,
            model_id=model_id,
            estimated_cost=estimate_cost(model_id, usage),
        )

    @staticmethod
    def _classify_error(exc: Exception, prefix: str) -> OpenAIModelError:
        """Map an SDK exception onto rate_limit, auth, timeout, server or unknown."""
        try:
            import openai
        except ImportError:
            return OpenAIModelError("unknown", f"{prefix}: {exc}")

        for name, error_class, label in _SDK_ERRORS:
            exc_type = getattr(openai, name, None)
            if isinstance(exc_type, type) and isinstance(exc, exc_type):
                return OpenAIModelError(error_class, f"{prefix}: {label}: {exc}")

        status_error = getattr(openai, "APIStatusError", None)
        if isinstance(status_error, type) and isinstance(exc, status_error):
            code = getattr(exc, "status_code", "?")
            return OpenAIModelError("server", f"{prefix}: HTTP {code}: {exc}")

        return OpenAIModelError("unknown", f"{prefix}: {exc}")
