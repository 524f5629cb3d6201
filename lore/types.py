"""
Shared types for lore.

Knowledge records, reflection records, and the per-cycle event shapes live
here. The store writes them, the retrieval and context paths read them, and
the reflection pipeline produces them. The types are the contract between
those pieces.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def to_iso(dt: datetime) -> str:
    """Render a datetime in the same form utc_now() produces.

    Stored timestamps are compared as strings, so every writer must use
    one fixed-width format.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_datetime(s: Optional[str], *, strict: bool = False) -> Optional[datetime]:
    """Parse ISO datetime string."""
    if not s:
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        if strict:
            raise
        return None


# === Enums ===


class KnowledgeType(str, Enum):
    """The closed set of knowledge record types.

    The key of each type is scoped differently: an author hash for
    user_narrative, a community name for community_insight, a topic slug
    for topic_expertise, and a strategy name for engagement_strategy.
    """

    USER_NARRATIVE = "user_narrative"
    COMMUNITY_INSIGHT = "community_insight"
    TOPIC_EXPERTISE = "topic_expertise"
    ENGAGEMENT_STRATEGY = "engagement_strategy"


VALID_KNOWLEDGE_TYPE_VALUES = frozenset(t.value for t in KnowledgeType)


class InteractionAction(str, Enum):
    """What was done with a post during a cycle."""

    ENGAGED = "engaged"
    CATALOGED = "cataloged"
    DEFLECTED = "deflected"
    SKIPPED = "skipped"
    REPLIED = "replied"


VALID_ACTION_VALUES = frozenset(a.value for a in InteractionAction)


def coerce_knowledge_type(value: Any) -> KnowledgeType:
    """Return the KnowledgeType for ``value`` or raise ValueError."""
    if isinstance(value, KnowledgeType):
        return value
    try:
        return KnowledgeType(value)
    except ValueError:
        raise ValueError(
            f"Invalid knowledge type: {value!r}. "
            f"Must be one of: {', '.join(sorted(VALID_KNOWLEDGE_TYPE_VALUES))}"
        ) from None


# === Knowledge ===


@dataclass
class KnowledgeRecord:
    """A confidence-weighted knowledge entry, unique per (type, key)."""

    id: int
    knowledge_type: KnowledgeType
    knowledge_key: str
    content: str
    structured_data: Optional[str] = None  # Serialized JSON, may be absent
    confidence: float = 0.3
    evidence_count: int = 1
    first_created_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None
    last_evidence_at: Optional[datetime] = None
    decay_applied_at: Optional[datetime] = None


@dataclass
class KnowledgeUpdate:
    """A validated knowledge mutation proposed by a reflection."""

    knowledge_type: KnowledgeType
    key: str
    content: str
    structured_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.knowledge_type.value,
            "key": self.key,
            "content": self.content,
        }
        if self.structured_data is not None:
            data["structured_data"] = self.structured_data
        return data


# === Cycle Events ===


@dataclass
class NotableInteraction:
    """One interaction worth remembering from a processing cycle."""

    post_id: str
    community: str
    author_hash: str
    score: float
    action: InteractionAction
    threat_level: int = 0
    author_name: Optional[str] = None
    shape: Optional[str] = None
    topics: Optional[List[str]] = None
    content_summary: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.action, InteractionAction):
            try:
                self.action = InteractionAction(self.action)
            except ValueError:
                raise ValueError(
                    f"Invalid action: {self.action!r}. "
                    f"Must be one of: {', '.join(sorted(VALID_ACTION_VALUES))}"
                ) from None


@dataclass
class CycleEvents:
    """Counters and notable interactions accumulated over one cycle."""

    posts_discovered: int = 0
    posts_engaged: int = 0
    attacks_cataloged: int = 0
    posts_failed: int = 0
    replies_sent: int = 0
    notable_interactions: List[NotableInteraction] = field(default_factory=list)


# === Reflections ===


@dataclass
class ReflectionRecord:
    """One append-only journal row per reflected cycle."""

    id: int
    cycle_timestamp: str
    cycle_hour: int
    posts_discovered: int = 0
    posts_engaged: int = 0
    attacks_cataloged: int = 0
    posts_failed: int = 0
    replies_sent: int = 0
    learning_summary: Optional[str] = None
    knowledge_updates: Optional[str] = None  # Serialized list of proposals
    reflection_cost: float = 0.0
    created_at: Optional[datetime] = None


@dataclass
class ReflectionResult:
    """What a reflection run produced."""

    reflection_id: int
    learning_summary: str
    knowledge_updates: int  # Proposals applied to the store
    failed_updates: int = 0
    cost: float = 0.0


# === Context ===


@dataclass
class MemoryContext:
    """Ephemeral prompt context, rebuilt on every request."""

    digest: Optional[str]
    relevant_knowledge: List[KnowledgeRecord] = field(default_factory=list)
    recent_learnings: List[str] = field(default_factory=list)
    combined_prompt_block: str = ""


# === Telemetry read from the engagement loop ===


@dataclass
class InteractionOutcome:
    """A recent engagement outcome, as recorded by the engagement loop."""

    hobbot_action: str
    submolt: Optional[str] = None
    topic_signals: Optional[str] = None


@dataclass
class AgentActivity:
    """A recently active agent's profile summary."""

    agent_hash: str
    username: Optional[str] = None
    quality_score: float = 0.0
    interaction_count: int = 0
