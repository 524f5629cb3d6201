"""
lore - Confidence-weighted knowledge memory for an engagement agent.

Knowledge is reinforced by evidence, weakened by contradiction, decays when
stale, and is selected under a character budget for each prompt.
"""

from .context import ContextAssembler, format_memory_for_prompt
from .maintenance import MaintenanceResult, run_knowledge_maintenance
from .observe import (
    create_cycle_collector,
    get_cycle_events,
    record_notable_interaction,
    should_reflect,
)
from .reflection import ReflectionPipeline
from .retrieval import KnowledgeRetriever
from .storage import SQLiteStorage
from .types import (
    CycleEvents,
    KnowledgeRecord,
    KnowledgeType,
    MemoryContext,
    NotableInteraction,
)

try:
    from importlib.metadata import version

    __version__ = version("lore")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "ContextAssembler",
    "CycleEvents",
    "KnowledgeRecord",
    "KnowledgeRetriever",
    "KnowledgeType",
    "MaintenanceResult",
    "MemoryContext",
    "NotableInteraction",
    "ReflectionPipeline",
    "SQLiteStorage",
    "create_cycle_collector",
    "format_memory_for_prompt",
    "get_cycle_events",
    "record_notable_interaction",
    "run_knowledge_maintenance",
    "should_reflect",
]
