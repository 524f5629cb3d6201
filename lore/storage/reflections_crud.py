"""Reflection journal, engagement telemetry reads, and usage accounting.

The interaction_outcomes and agent_profiles tables belong to the engagement
loop; lore only reads them. usage_log is write-only from here.
"""

import logging
import sqlite3
from datetime import timedelta
from typing import Callable, List, Optional

from lore.types import (
    AgentActivity,
    InteractionOutcome,
    ReflectionRecord,
    parse_datetime,
    to_iso,
)

logger = logging.getLogger(__name__)


def _row_to_reflection(row: sqlite3.Row) -> ReflectionRecord:
    """Convert a memory_reflections row to a ReflectionRecord."""
    return ReflectionRecord(
        id=row["id"],
        cycle_timestamp=row["cycle_timestamp"],
        cycle_hour=row["cycle_hour"],
        posts_discovered=row["posts_discovered"] or 0,
        posts_engaged=row["posts_engaged"] or 0,
        attacks_cataloged=row["attacks_cataloged"] or 0,
        posts_failed=row["posts_failed"] or 0,
        replies_sent=row["replies_sent"] or 0,
        learning_summary=row["learning_summary"],
        knowledge_updates=row["knowledge_updates"],
        reflection_cost=float(row["reflection_cost"] or 0.0),
        created_at=parse_datetime(row["created_at"]),
    )


def save_reflection(
    connect_fn: Callable,
    now_fn: Callable[[], str],
    *,
    cycle_timestamp: str,
    cycle_hour: int,
    posts_discovered: int,
    posts_engaged: int,
    attacks_cataloged: int,
    posts_failed: int = 0,
    replies_sent: int,
    learning_summary: Optional[str],
    knowledge_updates: Optional[str],
    reflection_cost: float,
) -> int:
    """Append one reflection row. Returns its id."""
    if not 0 <= cycle_hour <= 23:
        raise ValueError(f"cycle_hour must be in 0-23, got {cycle_hour}")

    with connect_fn() as conn:
        cursor = conn.execute(
            """
            INSERT INTO memory_reflections
                (cycle_timestamp, cycle_hour, posts_discovered, posts_engaged,
                 attacks_cataloged, posts_failed, replies_sent, learning_summary,
                 knowledge_updates, reflection_cost, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                cycle_timestamp,
                cycle_hour,
                posts_discovered,
                posts_engaged,
                attacks_cataloged,
                posts_failed,
                replies_sent,
                learning_summary,
                knowledge_updates,
                reflection_cost,
                now_fn(),
            ),
        )
        conn.commit()
        return int(cursor.lastrowid)


def get_recent_reflections(connect_fn: Callable, limit: int = 4) -> List[ReflectionRecord]:
    """Most recent reflections, newest first."""
    with connect_fn() as conn:
        rows = conn.execute(
            "SELECT * FROM memory_reflections ORDER BY cycle_timestamp DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
    return [_row_to_reflection(r) for r in rows]


def get_recent_learnings(connect_fn: Callable, limit: int = 3) -> List[str]:
    """Learning summaries of the most recent reflections, newest first."""
    with connect_fn() as conn:
        rows = conn.execute(
            """
            SELECT learning_summary FROM memory_reflections
            WHERE learning_summary IS NOT NULL AND learning_summary != ''
            ORDER BY cycle_timestamp DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
    return [r["learning_summary"] for r in rows]


def get_recent_outcomes(
    connect_fn: Callable,
    now_fn: Callable[[], str],
    window_hours: int = 1,
    limit: int = 10,
) -> List[InteractionOutcome]:
    """Interaction outcomes recorded within the last ``window_hours``."""
    cutoff = to_iso(parse_datetime(now_fn(), strict=True) - timedelta(hours=window_hours))
    with connect_fn() as conn:
        rows = conn.execute(
            """
            SELECT hobbot_action, submolt, topic_signals
            FROM interaction_outcomes
            WHERE created_at > ?
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (cutoff, limit),
        ).fetchall()
    return [
        InteractionOutcome(
            hobbot_action=r["hobbot_action"],
            submolt=r["submolt"],
            topic_signals=r["topic_signals"],
        )
        for r in rows
    ]


def get_recent_agent_activity(
    connect_fn: Callable,
    now_fn: Callable[[], str],
    window_hours: int = 2,
    limit: int = 5,
) -> List[AgentActivity]:
    """Agents active within the last ``window_hours``, busiest first."""
    cutoff = to_iso(parse_datetime(now_fn(), strict=True) - timedelta(hours=window_hours))
    with connect_fn() as conn:
        rows = conn.execute(
            """
            SELECT agent_hash, username, quality_score, interaction_count
            FROM agent_profiles
            WHERE last_active_at > ?
            ORDER BY interaction_count DESC
            LIMIT ?
            """,
            (cutoff, limit),
        ).fetchall()
    return [
        AgentActivity(
            agent_hash=r["agent_hash"],
            username=r["username"],
            quality_score=float(r["quality_score"] or 0.0),
            interaction_count=int(r["interaction_count"] or 0),
        )
        for r in rows
    ]


def log_usage(
    connect_fn: Callable,
    now_fn: Callable[[], str],
    *,
    layer: str,
    provider: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    estimated_cost: float,
) -> None:
    """Record one model call in usage_log."""
    now = now_fn()
    with connect_fn() as conn:
        conn.execute(
            """
            INSERT INTO usage_log
                (date, layer, provider, model, input_tokens, output_tokens,
                 estimated_cost, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                now.split("T")[0],
                layer,
                provider,
                model,
                input_tokens,
                output_tokens,
                estimated_cost,
                now,
            ),
        )
        conn.commit()
