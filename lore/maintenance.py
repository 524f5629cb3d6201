"""Periodic knowledge maintenance: decay stale records, then prune dead ones."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from lore.storage import SQLiteStorage

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceResult:
    decayed: int = 0
    pruned: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


def run_knowledge_maintenance(
    storage: "SQLiteStorage",
    stale_days: Optional[int] = None,
    min_confidence: Optional[float] = None,
) -> MaintenanceResult:
    """Decay then prune. Runs every cycle, so a failure is reported, not raised."""
    result = MaintenanceResult()
    try:
        result.decayed = storage.decay_stale_knowledge(stale_days)
        if result.decayed:
            logger.info("memory_maintenance: decayed=%d", result.decayed)
        result.pruned = storage.prune_dead_knowledge(min_confidence)
        if result.pruned:
            logger.info("memory_maintenance: pruned=%d", result.pruned)
    except Exception as e:
        logger.error("memory_maintenance: failed: %s", e)
        result.error = str(e)
    return result
