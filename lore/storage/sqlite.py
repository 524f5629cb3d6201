"""SQLite storage backend for lore.

Local-first storage with:
- memory_knowledge: confidence-weighted knowledge records
- memory_reflections: append-only reflection journal
- read-only views onto engagement telemetry
- usage_log for model cost accounting
"""

import contextlib
import logging
import sqlite3
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from lore.config import DEFAULT_KNOWLEDGE_POLICY, KnowledgePolicy
from lore.protocols import StorageError
from lore.types import (
    AgentActivity,
    InteractionOutcome,
    KnowledgeRecord,
    ReflectionRecord,
    utc_now,
)
from lore.utils import get_lore_home

from . import knowledge_crud, reflections_crud
from .schema import init_db

logger = logging.getLogger(__name__)


class SQLiteStorage:
    """SQLite-based local storage for lore.

    Connections are opened per operation. Each mutation is one statement in
    its own transaction; WAL mode lets readers see either the row before or
    after a concurrent write, never a partial one.

    Args:
        db_path: Database file (default: ``<lore home>/memory.db``).
        now_fn: Clock returning an ISO UTC timestamp. Tests inject a fixed one.
        policy: Confidence accounting constants.
        busy_timeout_ms: How long a statement waits on a locked database.
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        *,
        now_fn: Optional[Callable[[], str]] = None,
        policy: KnowledgePolicy = DEFAULT_KNOWLEDGE_POLICY,
        busy_timeout_ms: int = 5000,
    ):
        self.db_path = self._resolve_db_path(db_path)
        self.policy = policy
        self._now_fn = now_fn or utc_now
        self._busy_timeout_ms = busy_timeout_ms

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _resolve_db_path(self, db_path: Optional[Path]) -> Path:
        """Resolve the database path, falling back to temp dir if home is not writable."""
        if db_path is not None:
            return Path(db_path).expanduser().resolve()

        default_path = get_lore_home() / "memory.db"
        try:
            default_path.parent.mkdir(parents=True, exist_ok=True)
            return default_path.resolve()
        except OSError as e:
            # Home dir not writable (sandboxed/container/CI environment)
            fallback_path = Path(tempfile.gettempdir()) / ".lore" / "memory.db"
            logger.warning(
                "Cannot write to %s (%s), falling back to %s",
                default_path.parent,
                e,
                fallback_path.parent,
            )
            return fallback_path

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection.

        - Transaction commit on success
        - Transaction rollback on exception
        - sqlite3 errors re-raised as StorageError
        - Connection close in all cases
        """
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.debug("Transaction failed, rolling back: %s", e)
            conn.rollback()
            raise StorageError(f"SQLite operation failed: {e}") from e
        except Exception as e:
            logger.debug("Transaction failed, rolling back: %s", e)
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        with self._connect() as conn:
            init_db(conn, self.db_path)

    def _now(self) -> str:
        """Get current timestamp as ISO string."""
        return self._now_fn()

    def close(self):
        """Close any resources.

        Connections are per-operation, so this exists for API symmetry.
        """
        pass

    # === Knowledge ===

    def upsert_knowledge(
        self,
        knowledge_type: Any,
        key: str,
        content: str,
        structured_data: Optional[Dict[str, Any]] = None,
        evidence_count: int = 1,
    ) -> Tuple[int, bool]:
        """Create or reinforce a knowledge record. Returns (id, is_new)."""
        return knowledge_crud.upsert_knowledge(
            self._connect,
            self._now,
            knowledge_type,
            key,
            content,
            structured_data,
            evidence_count,
            policy=self.policy,
        )

    def contradict_knowledge(self, knowledge_type: Any, key: str, new_content: str) -> bool:
        """Weaken a record and replace its content. False if it doesn't exist."""
        return knowledge_crud.contradict_knowledge(
            self._connect, self._now, knowledge_type, key, new_content, policy=self.policy
        )

    def decay_stale_knowledge(self, stale_days: Optional[int] = None) -> int:
        """Decay records without fresh evidence. Returns count decayed."""
        if stale_days is None:
            stale_days = self.policy.stale_days
        return knowledge_crud.decay_stale_knowledge(
            self._connect, self._now, stale_days, policy=self.policy
        )

    def prune_dead_knowledge(self, min_confidence: Optional[float] = None) -> int:
        """Delete records below ``min_confidence``. Returns count deleted."""
        if min_confidence is None:
            min_confidence = self.policy.prune_threshold
        return knowledge_crud.prune_dead_knowledge(self._connect, min_confidence)

    def get_knowledge(self, knowledge_type: Any, key: str) -> Optional[KnowledgeRecord]:
        return knowledge_crud.get_knowledge(self._connect, knowledge_type, key)

    def get_knowledge_by_type(
        self, knowledge_type: Any, min_confidence: float = 0.2, limit: int = 10
    ) -> List[KnowledgeRecord]:
        """Records of one type at or above ``min_confidence``, highest first."""
        return knowledge_crud.list_knowledge(
            self._connect, knowledge_type, min_confidence=min_confidence, limit=limit
        )

    def list_knowledge(
        self, min_confidence: float = 0.0, limit: int = 50
    ) -> List[KnowledgeRecord]:
        """Records of every type at or above ``min_confidence``, highest first."""
        return knowledge_crud.list_knowledge(
            self._connect, None, min_confidence=min_confidence, limit=limit
        )

    def get_knowledge_stats(self) -> Dict[str, Dict[str, float]]:
        return knowledge_crud.get_knowledge_stats(self._connect)

    # === Reflections ===

    def save_reflection(self, **fields: Any) -> int:
        """Append a reflection row. See reflections_crud.save_reflection."""
        return reflections_crud.save_reflection(self._connect, self._now, **fields)

    def get_recent_reflections(self, limit: int = 4) -> List[ReflectionRecord]:
        return reflections_crud.get_recent_reflections(self._connect, limit)

    def get_recent_learnings(self, limit: int = 3) -> List[str]:
        return reflections_crud.get_recent_learnings(self._connect, limit)

    # === Engagement telemetry (read-only) ===

    def get_recent_outcomes(
        self, window_hours: int = 1, limit: int = 10
    ) -> List[InteractionOutcome]:
        return reflections_crud.get_recent_outcomes(
            self._connect, self._now, window_hours, limit
        )

    def get_recent_agent_activity(
        self, window_hours: int = 2, limit: int = 5
    ) -> List[AgentActivity]:
        return reflections_crud.get_recent_agent_activity(
            self._connect, self._now, window_hours, limit
        )

    # === Usage accounting ===

    def log_usage(self, **fields: Any) -> None:
        """Write one usage_log row. See reflections_crud.log_usage."""
        reflections_crud.log_usage(self._connect, self._now, **fields)
