"""Knowledge CRUD operations for the memory_knowledge table.

All functions receive their dependencies explicitly (connection factory,
clock, policy) so they can be tested without a SQLiteStorage instance.

Every mutation is a single SQL statement. The confidence arithmetic runs
inside the statement, so concurrent writers on the same (type, key) merge
instead of overwriting each other.
"""

import json
import logging
import sqlite3
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from lore.config import DEFAULT_KNOWLEDGE_POLICY, KnowledgePolicy
from lore.types import KnowledgeRecord, coerce_knowledge_type, parse_datetime, to_iso

logger = logging.getLogger(__name__)


def _row_to_knowledge(row: sqlite3.Row) -> KnowledgeRecord:
    """Convert a memory_knowledge row to a KnowledgeRecord."""
    return KnowledgeRecord(
        id=row["id"],
        knowledge_type=coerce_knowledge_type(row["knowledge_type"]),
        knowledge_key=row["knowledge_key"],
        content=row["content"],
        structured_data=row["structured_data"],
        confidence=float(row["confidence"]),
        evidence_count=int(row["evidence_count"]),
        first_created_at=parse_datetime(row["first_created_at"]),
        last_updated_at=parse_datetime(row["last_updated_at"]),
        last_evidence_at=parse_datetime(row["last_evidence_at"]),
        decay_applied_at=parse_datetime(row["decay_applied_at"]),
    )


def _serialize_structured(data: Optional[Dict[str, Any]]) -> Optional[str]:
    if data is None:
        return None
    return json.dumps(data)


def upsert_knowledge(
    connect_fn: Callable,
    now_fn: Callable[[], str],
    knowledge_type: Any,
    key: str,
    content: str,
    structured_data: Optional[Dict[str, Any]] = None,
    evidence_count: int = 1,
    *,
    policy: KnowledgePolicy = DEFAULT_KNOWLEDGE_POLICY,
) -> Tuple[int, bool]:
    """Create or reinforce a knowledge record.

    A new (type, key) is stored at ``policy.initial_confidence``. An existing
    one is reinforced: content is replaced, structured data is replaced only
    when a new value is given, confidence closes ``policy.reinforce_rate``
    of the gap to 1.0, and evidence_count grows by ``evidence_count``.

    Args:
        connect_fn: Context manager returning a DB connection.
        now_fn: Returns current UTC timestamp as ISO string.
        knowledge_type: A KnowledgeType or its string value.
        key: Scoped identifier (author hash, community, topic, strategy).
        content: Short factual label.
        structured_data: Optional machine-readable payload.
        evidence_count: Evidence contributed by this observation (>= 1).

    Returns:
        (record id, True if the call created the record)
    """
    ktype = coerce_knowledge_type(knowledge_type)
    if not key:
        raise ValueError("Knowledge key cannot be empty")
    if evidence_count < 1:
        raise ValueError("evidence_count must be at least 1")

    now = now_fn()
    structured_json = _serialize_structured(structured_data)

    with connect_fn() as conn:
        conn.execute(
            """
            INSERT INTO memory_knowledge
                (knowledge_type, knowledge_key, content, structured_data, confidence,
                 evidence_count, first_created_at, last_updated_at, last_evidence_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(knowledge_type, knowledge_key) DO UPDATE SET
                content = excluded.content,
                structured_data = COALESCE(excluded.structured_data,
                                           memory_knowledge.structured_data),
                confidence = MIN(1.0, memory_knowledge.confidence
                                      + ? * (1.0 - memory_knowledge.confidence)),
                evidence_count = memory_knowledge.evidence_count + excluded.evidence_count,
                last_updated_at = excluded.last_updated_at,
                last_evidence_at = excluded.last_evidence_at
            """,
            (
                ktype.value,
                key,
                content,
                structured_json,
                policy.initial_confidence,
                evidence_count,
                now,
                now,
                now,
                policy.reinforce_rate,
            ),
        )
        # Same transaction: the write lock is still held, so this reads our row
        row = conn.execute(
            "SELECT id, evidence_count FROM memory_knowledge "
            "WHERE knowledge_type = ? AND knowledge_key = ?",
            (ktype.value, key),
        ).fetchone()
        conn.commit()

    is_new = int(row["evidence_count"]) == evidence_count
    logger.debug(
        "Upserted knowledge %s:%s (id=%s, new=%s)", ktype.value, key, row["id"], is_new
    )
    return int(row["id"]), is_new


def contradict_knowledge(
    connect_fn: Callable,
    now_fn: Callable[[], str],
    knowledge_type: Any,
    key: str,
    new_content: str,
    *,
    policy: KnowledgePolicy = DEFAULT_KNOWLEDGE_POLICY,
) -> bool:
    """Weaken a record after contradictory evidence and replace its content.

    Returns:
        True if a record was updated, False if none exists for (type, key).
    """
    ktype = coerce_knowledge_type(knowledge_type)
    now = now_fn()

    with connect_fn() as conn:
        cursor = conn.execute(
            """
            UPDATE memory_knowledge
            SET content = ?,
                confidence = MAX(?, confidence - ?),
                last_updated_at = ?,
                last_evidence_at = ?
            WHERE knowledge_type = ? AND knowledge_key = ?
            """,
            (
                new_content,
                policy.confidence_floor,
                policy.contradiction_penalty,
                now,
                now,
                ktype.value,
                key,
            ),
        )
        conn.commit()
        return cursor.rowcount > 0


def decay_stale_knowledge(
    connect_fn: Callable,
    now_fn: Callable[[], str],
    stale_days: int = 14,
    *,
    policy: KnowledgePolicy = DEFAULT_KNOWLEDGE_POLICY,
) -> int:
    """Decay confidence of records with no fresh evidence.

    A record decays when its last evidence is older than ``stale_days``, its
    confidence is above the floor, and it has not decayed within the last
    ``policy.decay_interval_days``. Repeated calls inside that interval are
    no-ops for records already decayed.

    Returns:
        Number of records decayed.
    """
    now = now_fn()
    now_dt = parse_datetime(now, strict=True)
    stale_cutoff = to_iso(now_dt - timedelta(days=stale_days))
    decay_cutoff = to_iso(now_dt - timedelta(days=policy.decay_interval_days))

    with connect_fn() as conn:
        cursor = conn.execute(
            """
            UPDATE memory_knowledge
            SET confidence = confidence * ?,
                decay_applied_at = ?
            WHERE last_evidence_at < ?
              AND confidence > ?
              AND (decay_applied_at IS NULL OR decay_applied_at < ?)
            """,
            (
                policy.decay_factor,
                now,
                stale_cutoff,
                policy.confidence_floor,
                decay_cutoff,
            ),
        )
        conn.commit()
        return cursor.rowcount


def prune_dead_knowledge(connect_fn: Callable, min_confidence: float = 0.1) -> int:
    """Delete records whose confidence is strictly below ``min_confidence``."""
    with connect_fn() as conn:
        cursor = conn.execute(
            "DELETE FROM memory_knowledge WHERE confidence < ?",
            (min_confidence,),
        )
        conn.commit()
        return cursor.rowcount


def get_knowledge(
    connect_fn: Callable, knowledge_type: Any, key: str
) -> Optional[KnowledgeRecord]:
    """Get a single knowledge record by type and key."""
    ktype = coerce_knowledge_type(knowledge_type)
    with connect_fn() as conn:
        row = conn.execute(
            "SELECT * FROM memory_knowledge WHERE knowledge_type = ? AND knowledge_key = ?",
            (ktype.value, key),
        ).fetchone()
    return _row_to_knowledge(row) if row else None


def list_knowledge(
    connect_fn: Callable,
    knowledge_type: Any = None,
    min_confidence: float = 0.0,
    limit: int = 10,
) -> List[KnowledgeRecord]:
    """List knowledge records by confidence, highest first.

    Args:
        knowledge_type: Restrict to one type (None = all types).
        min_confidence: Inclusive confidence floor.
        limit: Maximum records returned.
    """
    query = "SELECT * FROM memory_knowledge WHERE confidence >= ?"
    params: List[Any] = [min_confidence]
    if knowledge_type is not None:
        query += " AND knowledge_type = ?"
        params.append(coerce_knowledge_type(knowledge_type).value)
    query += " ORDER BY confidence DESC, id ASC LIMIT ?"
    params.append(limit)

    with connect_fn() as conn:
        rows = conn.execute(query, params).fetchall()
    return [_row_to_knowledge(r) for r in rows]


def get_knowledge_stats(connect_fn: Callable) -> Dict[str, Dict[str, float]]:
    """Count and average confidence per knowledge type."""
    with connect_fn() as conn:
        rows = conn.execute(
            """
            SELECT knowledge_type, COUNT(*) AS n, AVG(confidence) AS avg_conf
            FROM memory_knowledge
            GROUP BY knowledge_type
            """
        ).fetchall()
    return {
        r["knowledge_type"]: {"count": int(r["n"]), "avg_confidence": float(r["avg_conf"])}
        for r in rows
    }
