"""Prompt context assembly.

Combines the platform digest, budgeted knowledge retrieval, and recent
reflection learnings into one bounded block for a generation prompt.

Section order is also truncation priority: the digest comes first, then
knowledge, then learnings. Each section is truncated to its own limit
before the joined block is truncated to the overall limit.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, List, Optional

from lore.config import DEFAULT_CONTEXT_LIMITS, ContextLimits
from lore.types import KnowledgeRecord, KnowledgeType, MemoryContext

if TYPE_CHECKING:
    from lore.retrieval import KnowledgeRetriever
    from lore.storage import SQLiteStorage

logger = logging.getLogger(__name__)

PROMPT_HEADER = "PLATFORM INTELLIGENCE:"

# Sentence ends the truncator may cut after
_SENTENCE_BOUNDARIES = (". ", ".\n", "! ", "!\n", "? ", "?\n")


# =============================================================================
# Formatting
# =============================================================================


def format_knowledge_entry(record: KnowledgeRecord) -> str:
    """Render a record on one line: ``[type] key (conf:0.43): payload``.

    The payload is the structured data re-serialized compactly when it is
    present and parseable, otherwise the content text. Retrieval measures
    budget with this exact rendering.
    """
    ktype = record.knowledge_type
    type_label = ktype.value if isinstance(ktype, KnowledgeType) else str(ktype)
    prefix = f"[{type_label}] {record.knowledge_key} (conf:{record.confidence:.2f}): "

    if record.structured_data:
        try:
            data = json.loads(record.structured_data)
        except (TypeError, ValueError):
            pass
        else:
            return prefix + json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return prefix + record.content


def truncate_at_sentence(text: str, max_chars: int) -> str:
    """Truncate ``text`` to at most ``max_chars``, preferring a clean break.

    Text that already fits is returned unchanged. Otherwise the cut lands
    after the last sentence-ending punctuation (followed by a space or
    newline) if that is at or past half of ``max_chars``; failing that,
    before the last newline if it is at or past half; failing that, at
    exactly ``max_chars``.
    """
    if len(text) <= max_chars:
        return text

    truncated = text[:max_chars]
    half = max_chars * 0.5

    last_sentence = max(truncated.rfind(b) for b in _SENTENCE_BOUNDARIES)
    if last_sentence >= 0 and last_sentence >= half:
        return truncated[: last_sentence + 1]

    last_newline = truncated.rfind("\n")
    if last_newline >= 0 and last_newline >= half:
        return truncated[:last_newline]

    return truncated


def format_digest(raw_digest: str, max_chars: int) -> str:
    """Format a platform digest for the prompt.

    Structured digests are JSON objects with any of ``landscape_summary``,
    ``dominant_patterns``, ``emerging_trends`` and ``generation_seeds``.
    Anything that is not a JSON object is legacy prose and passes through.
    """
    try:
        parsed = json.loads(raw_digest)
    except (TypeError, ValueError):
        parsed = None

    if not isinstance(parsed, dict):
        return truncate_at_sentence(raw_digest, max_chars)

    lines: List[str] = []
    summary = parsed.get("landscape_summary")
    if summary:
        lines.append(f"LANDSCAPE: {summary}")

    patterns = parsed.get("dominant_patterns")
    if isinstance(patterns, list) and patterns:
        lines.append(f"DOMINANT PATTERNS: {', '.join(str(p) for p in patterns)}")

    trends = parsed.get("emerging_trends")
    if isinstance(trends, list) and trends:
        lines.append(f"EMERGING TRENDS: {'; '.join(str(t) for t in trends)}")

    seeds = parsed.get("generation_seeds")
    if isinstance(seeds, list) and seeds:
        lines.append("GENERATION SEEDS:")
        lines.extend(f"- {seed}" for seed in seeds)

    return truncate_at_sentence("\n".join(lines), max_chars)


def format_memory_for_prompt(context: MemoryContext) -> Optional[str]:
    """Prefix the combined block for a system prompt, or None if empty."""
    if not context.combined_prompt_block:
        return None
    return f"{PROMPT_HEADER}\n{context.combined_prompt_block}"


# =============================================================================
# Assembly
# =============================================================================


class ContextAssembler:
    """Builds MemoryContext blocks from the store.

    Knowledge and learnings lookups are best-effort: a failure is logged and
    that section is left out, the rest of the block is still built.
    """

    def __init__(
        self,
        storage: "SQLiteStorage",
        retriever: Optional["KnowledgeRetriever"] = None,
        limits: ContextLimits = DEFAULT_CONTEXT_LIMITS,
    ) -> None:
        if retriever is None:
            from lore.retrieval import KnowledgeRetriever

            retriever = KnowledgeRetriever(storage, limits=limits)
        self._storage = storage
        self._retriever = retriever
        self._limits = limits

    def build_context(
        self,
        digest: Optional[str],
        author_key: Optional[str] = None,
        community_key: Optional[str] = None,
        topics: Optional[List[str]] = None,
    ) -> MemoryContext:
        limits = self._limits
        parts: List[str] = []

        formatted_digest = format_digest(digest, limits.max_digest_chars) if digest else None
        if formatted_digest:
            parts.append(formatted_digest)

        relevant: List[KnowledgeRecord] = []
        try:
            relevant = self._retriever.select(
                author_key=author_key,
                community_key=community_key,
                topics=topics,
                char_budget=limits.max_knowledge_chars,
            )
        except Exception as e:
            logger.error("Knowledge retrieval failed: %s", e)

        if relevant:
            block = "\n".join(format_knowledge_entry(r) for r in relevant)
            parts.append(
                "RELEVANT KNOWLEDGE:\n"
                + truncate_at_sentence(block, limits.max_knowledge_chars)
            )

        learnings: List[str] = []
        try:
            learnings = [
                s for s in self._storage.get_recent_learnings(limits.recent_learnings) if s
            ]
        except Exception as e:
            logger.error("Recent learnings query failed: %s", e)

        if learnings:
            block = "\n".join(f"- {s}" for s in learnings)
            parts.append(
                "RECENT LEARNINGS:\n" + truncate_at_sentence(block, limits.max_learnings_chars)
            )

        combined = (
            truncate_at_sentence("\n\n".join(parts), limits.max_context_chars) if parts else ""
        )

        return MemoryContext(
            digest=formatted_digest,
            relevant_knowledge=relevant,
            recent_learnings=learnings,
            combined_prompt_block=combined,
        )
