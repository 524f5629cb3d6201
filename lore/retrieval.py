"""Budgeted knowledge retrieval.

Selects knowledge for one request in fixed priority tiers:

  1. user_narrative for the author
  2. community_insight for the community
  3. topic_expertise for the first topics, in the order given
  4. the strongest engagement_strategy records

Every candidate is measured by its formatted line and accepted only if it
fits the budget that is left. A candidate that does not fit is skipped,
later candidates may still fit. Once the budget is used up no further tier
is queried. The result keeps tier order.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from lore.config import (
    DEFAULT_CONTEXT_LIMITS,
    DEFAULT_KNOWLEDGE_POLICY,
    ContextLimits,
    KnowledgePolicy,
)
from lore.context import format_knowledge_entry
from lore.types import KnowledgeRecord, KnowledgeType

if TYPE_CHECKING:
    from lore.storage import SQLiteStorage

logger = logging.getLogger(__name__)


class _Budget:
    """Running character budget for one selection."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.used = 0

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def try_take(self, record: KnowledgeRecord) -> bool:
        length = len(format_knowledge_entry(record))
        if self.used + length > self.limit:
            return False
        self.used += length
        return True


class KnowledgeRetriever:
    """Selects knowledge records for a request under a character budget."""

    def __init__(
        self,
        storage: "SQLiteStorage",
        policy: KnowledgePolicy = DEFAULT_KNOWLEDGE_POLICY,
        limits: ContextLimits = DEFAULT_CONTEXT_LIMITS,
    ) -> None:
        self._storage = storage
        self._policy = policy
        self._limits = limits

    def select(
        self,
        author_key: Optional[str] = None,
        community_key: Optional[str] = None,
        topics: Optional[List[str]] = None,
        char_budget: int = 800,
    ) -> List[KnowledgeRecord]:
        results: List[KnowledgeRecord] = []
        budget = _Budget(char_budget)

        if budget.exhausted:
            return results

        # Tier 1: what we know about the author
        if author_key:
            self._take_keyed(KnowledgeType.USER_NARRATIVE, author_key, budget, results)
        if budget.exhausted:
            return results

        # Tier 2: the community the request comes from
        if community_key:
            self._take_keyed(KnowledgeType.COMMUNITY_INSIGHT, community_key, budget, results)
        if budget.exhausted:
            return results

        # Tier 3: topics, input order
        for topic in (topics or [])[: self._limits.max_topics]:
            if budget.exhausted:
                return results
            self._take_keyed(KnowledgeType.TOPIC_EXPERTISE, topic, budget, results)
        if budget.exhausted:
            return results

        # Tier 4: strongest general strategies fill what is left
        strategies = self._storage.get_knowledge_by_type(
            KnowledgeType.ENGAGEMENT_STRATEGY,
            min_confidence=self._policy.strategy_min_confidence,
            limit=self._limits.max_strategies,
        )
        for strategy in strategies:
            if budget.exhausted:
                break
            if budget.try_take(strategy):
                results.append(strategy)

        logger.debug(
            "Selected %d knowledge records (%d/%d chars)",
            len(results),
            budget.used,
            budget.limit,
        )
        return results

    def _take_keyed(
        self,
        knowledge_type: KnowledgeType,
        key: str,
        budget: _Budget,
        results: List[KnowledgeRecord],
    ) -> None:
        record = self._storage.get_knowledge(knowledge_type, key)
        if record is None or record.confidence < self._policy.retrieval_min_confidence:
            return
        if budget.try_take(record):
            results.append(record)
