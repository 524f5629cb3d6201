"""
Pytest fixtures and test configuration for lore tests.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from lore.protocols import ModelCapabilities, ModelError, ModelMessage, ModelResponse
from lore.storage import SQLiteStorage
from lore.types import to_iso

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock; call it to get the current ISO timestamp."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> str:
        return to_iso(self.current)

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class MockModel:
    """ModelProtocol stand-in that returns canned content and records calls."""

    def __init__(
        self,
        content: str = "{}",
        *,
        model_id: str = "mock-model",
        provider: str = "mock",
        usage: Optional[dict] = None,
        cost: float = 0.0012,
    ):
        self.content = content
        self._model_id = model_id
        self._provider = provider
        self.usage = usage if usage is not None else {"input_tokens": 120, "output_tokens": 40}
        self.cost = cost
        self.calls: List[dict] = []

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(
            model_id=self._model_id,
            provider=self._provider,
            context_window=8192,
            supports_json_mode=True,
        )

    def generate(
        self,
        messages: List[ModelMessage],
        *,
        temperature=None,
        max_tokens=None,
        system=None,
        response_format="text",
    ) -> ModelResponse:
        self.calls.append(
            {
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "system": system,
                "response_format": response_format,
            }
        )
        return ModelResponse(
            content=self.content,
            usage=dict(self.usage),
            stop_reason="end_turn",
            model_id=self._model_id,
            estimated_cost=self.cost,
        )


class FailingModel(MockModel):
    """A model whose every call fails with a ModelError."""

    def __init__(self, error_class: str = "server"):
        super().__init__()
        self.error_class = error_class

    def generate(self, messages, **kwargs) -> ModelResponse:
        self.calls.append({"messages": messages, **kwargs})
        raise ModelError(self.error_class, "synthesis backend unavailable")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(tmp_path, clock):
    """SQLiteStorage on a temp database, driven by the fake clock."""
    s = SQLiteStorage(db_path=tmp_path / "memory.db", now_fn=clock)
    yield s
    s.close()


@pytest.fixture
def mock_model():
    return MockModel()


@pytest.fixture(autouse=True)
def reset_lore_logger():
    """Undo handlers/propagation changes made by setup_lore_logging."""
    logger = logging.getLogger("lore")
    yield
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def lore_home(tmp_path, monkeypatch):
    """Point LORE_DATA_DIR at a temp directory."""
    home = tmp_path / "lore-home"
    monkeypatch.setenv("LORE_DATA_DIR", str(home))
    return home
