"""Ollama backend for reflection, over the local REST chat endpoint.

Local inference is free, so ``estimated_cost`` is always 0.
"""

from __future__ import annotations

from typing import Any, Optional

from lore.protocols import (
    ModelCapabilities,
    ModelError,
    ModelMessage,
    ModelResponse,
    check_response_format,
)


class OllamaModelError(ModelError):
    """An Ollama call failed or the server was unreachable."""


def _error_class_for_status(status_code: int) -> str:
    if status_code == 401:
        return "auth"
    if status_code == 429:
        return "rate_limit"
    if status_code >= 500:
        return "server"
    return "unknown"


class OllamaModel:
    """A model served by Ollama (``pip install lore[ollama]`` for ``requests``).

    ``response_format="json"`` sends ``format: "json"``; sampling settings go
    under ``options``.
    """

    def __init__(
        self,
        model_id: str = "llama3.2:latest",
        *,
        base_url: str = "http://localhost:11434",
        context_window: int = 8192,
        timeout: int = 120,
    ) -> None:
        try:
            import requests
        except ImportError:
            raise ImportError(
                "OllamaModel needs the 'requests' package: pip install lore[ollama]"
            ) from None

        self._requests = requests
        self._model_id = model_id
        self._base_url = base_url.rstrip("/")
        self._context_window = context_window
        self._timeout = timeout

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(
            model_id=self._model_id,
            provider="ollama",
            context_window=self._context_window,
            max_output_tokens=self._context_window,
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

        body: dict[str, Any] = {"model": self._model_id, "messages": chat, "stream": False}
        if response_format == "json":
            body["format"] = "json"
        options = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        if options:
            body["options"] = options

        data = self._post("/api/chat", body)
        usage = {}
        if "prompt_eval_count" in data:
            usage["input_tokens"] = data["prompt_eval_count"]
        if "eval_count" in data:
            usage["output_tokens"] = data["eval_count"]

        return ModelResponse(
            content=data.get("message", {}).get("content", ""),
            usage=usage,
            stop_reason=data.get("done_reason", "stop"),
            model_id=data.get("model", self._model_id),
            estimated_cost=0.0,
        )

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = self._requests.post(
                f"{self._base_url}{path}", json=body, timeout=self._timeout
            )
        except self._requests.ConnectionError as exc:
            raise OllamaModelError(
                "timeout", f"Cannot connect to Ollama at {self._base_url}: {exc}"
            ) from exc
        except self._requests.Timeout as exc:
            raise OllamaModelError(
                "timeout", f"Ollama timed out after {self._timeout}s: {exc}"
            ) from exc

        if resp.status_code != 200:
            raise OllamaModelError(
                _error_class_for_status(resp.status_code),
                f"Ollama HTTP {resp.status_code}: {resp.text}",
            )
        return resp.json()
