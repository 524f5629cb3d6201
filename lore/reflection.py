"""Memory reflection: one synthesis pass per cycle.

Turns a cycle's events plus recent history into a learning summary and a
small set of knowledge updates:

  history + telemetry -> prompt -> model (JSON) -> parse -> journal row -> upserts

Failure policy per step:
- History and telemetry reads are best-effort; failures become empty input.
- A model failure propagates. Nothing is written for that cycle.
- An unparseable response falls back to a fixed summary with no updates.
- One failing knowledge upsert is logged and skipped; the journal row and
  the other updates stand.
- Usage logging failures are logged and otherwise ignored.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from lore.config import DEFAULT_REFLECTION_CONFIG, ReflectionConfig
from lore.protocols import ModelMessage
from lore.types import (
    VALID_KNOWLEDGE_TYPE_VALUES,
    AgentActivity,
    CycleEvents,
    InteractionOutcome,
    KnowledgeType,
    KnowledgeUpdate,
    ReflectionRecord,
    ReflectionResult,
    parse_datetime,
    utc_now,
)

if TYPE_CHECKING:
    from lore.protocols import ModelProtocol
    from lore.storage import SQLiteStorage

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "Reflection parse failed. Cycle processed without incident."

_CODE_FENCE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


# =============================================================================
# Prompts
# =============================================================================

REFLECTION_SYSTEM_PROMPT = (
    "You are the memory system of a social platform engagement agent. "
    "Turn one cycle of observations into structured learning.\n\n"
    "You receive cycle metrics, notable interactions, and recent history. "
    "Respond with JSON only, in this shape:\n"
    "{\n"
    '  "learning_summary": "1-2 factual sentences in plain analytical language",\n'
    '  "knowledge_updates": [\n'
    "    {\n"
    '      "type": "user_narrative|community_insight|topic_expertise|engagement_strategy",\n'
    '      "key": "author hash for users, community name for communities, '
    'topic slug for topics, strategy name for strategies",\n'
    '      "content": "short factual label",\n'
    '      "structured_data": {"topics": ["topic"], "stance": "neutral|positive|antagonistic", '
    '"post_frequency": "high|medium|low", "quality_trend": "improving|stable|declining"}\n'
    "    }\n"
    "  ]\n"
    "}\n\n"
    "Knowledge types:\n"
    "- user_narrative: an author's posting style, interests, quality level\n"
    "- community_insight: a community's dynamics, trends, activity level\n"
    "- topic_expertise: what is known about a topic and its presence on the platform\n"
    "- engagement_strategy: which engagement approaches work and which don't\n\n"
    "Rules:\n"
    "- learning_summary: factual observations only, no persona voice, no metaphors\n"
    "- content: a label under 100 characters, not prose\n"
    "- structured_data: include machine-readable fields with every update\n"
    "- If nothing notable happened, say so and return an empty knowledge_updates array"
)


# =============================================================================
# Response parsing
# =============================================================================


@dataclass
class ParsedReflection:
    """A reflection response after validation."""

    learning_summary: str
    knowledge_updates: List[KnowledgeUpdate] = field(default_factory=list)
    parse_failed: bool = False


def _strip_code_fence(text: str) -> str:
    match = _CODE_FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text


def _validate_update(candidate: Any, config: ReflectionConfig) -> Optional[KnowledgeUpdate]:
    """Return a KnowledgeUpdate for a well-formed candidate, else None."""
    if not isinstance(candidate, dict):
        return None
    ktype = candidate.get("type")
    key = candidate.get("key")
    content = candidate.get("content")
    if not isinstance(ktype, str) or ktype not in VALID_KNOWLEDGE_TYPE_VALUES:
        return None
    if not isinstance(key, str) or not key:
        return None
    if not isinstance(content, str) or not content:
        return None

    structured = candidate.get("structured_data")
    return KnowledgeUpdate(
        knowledge_type=KnowledgeType(ktype),
        key=key[: config.max_key_chars],
        content=content[: config.max_content_chars],
        structured_data=structured if isinstance(structured, dict) else None,
    )


def parse_reflection_response(
    raw_content: str, config: ReflectionConfig = DEFAULT_REFLECTION_CONFIG
) -> ParsedReflection:
    """Parse the model's reflection JSON without ever raising.

    Code fences are stripped. Anything that does not parse to a JSON object
    yields the fallback summary and no updates. Otherwise the summary is
    clamped and the first ``config.max_updates`` proposals are validated;
    malformed proposals are dropped.
    """
    try:
        parsed = json.loads(_strip_code_fence((raw_content or "").strip()))
    except (TypeError, ValueError) as e:
        logger.error("Failed to parse reflection response: %s", e)
        logger.debug("Raw reflection response: %.200s", raw_content)
        return ParsedReflection(learning_summary=FALLBACK_SUMMARY, parse_failed=True)

    if not isinstance(parsed, dict):
        logger.error("Reflection response is %s, expected an object", type(parsed).__name__)
        return ParsedReflection(learning_summary=FALLBACK_SUMMARY, parse_failed=True)

    summary = parsed.get("learning_summary")
    if isinstance(summary, str):
        summary = summary[: config.max_summary_chars]
    else:
        summary = FALLBACK_SUMMARY

    updates: List[KnowledgeUpdate] = []
    candidates = parsed.get("knowledge_updates")
    if isinstance(candidates, list):
        for candidate in candidates[: config.max_updates]:
            update = _validate_update(candidate, config)
            if update is not None:
                updates.append(update)

    return ParsedReflection(learning_summary=summary, knowledge_updates=updates)


# =============================================================================
# Prompt rendering
# =============================================================================


def build_reflection_prompt(
    events: CycleEvents,
    recent_reflections: List[ReflectionRecord],
    outcomes: List[InteractionOutcome],
    agents: List[AgentActivity],
) -> str:
    parts: List[str] = []

    if recent_reflections:
        parts.append("RECENT REFLECTIONS:")
        for r in recent_reflections:
            parts.append(f"- [{r.cycle_timestamp}] {r.learning_summary or 'No summary'}")
        parts.append("")

    parts.append("THIS CYCLE:")
    parts.append(f"- Posts discovered: {events.posts_discovered}")
    parts.append(f"- Posts engaged: {events.posts_engaged}")
    parts.append(f"- Attacks cataloged: {events.attacks_cataloged}")
    parts.append(f"- Posts failed: {events.posts_failed}")
    parts.append(f"- Replies sent: {events.replies_sent}")
    parts.append("")

    if events.notable_interactions:
        parts.append("NOTABLE INTERACTIONS:")
        for ni in events.notable_interactions:
            line = (
                f"- [{ni.action.value}] {ni.community} author:{ni.author_hash}"
                f" score:{ni.score} threat:{ni.threat_level}"
            )
            if ni.author_name:
                line += f" name:{ni.author_name}"
            if ni.shape:
                line += f" shape:{ni.shape}"
            if ni.topics:
                line += f" topics:[{','.join(ni.topics)}]"
            if ni.content_summary:
                line += f' "{ni.content_summary}"'
            parts.append(line)
        parts.append("")

    if outcomes:
        parts.append("RECENT OUTCOMES (last hour):")
        for o in outcomes:
            parts.append(f"- {o.hobbot_action} in {o.submolt}: {o.topic_signals or 'no topics'}")
        parts.append("")

    if agents:
        parts.append("ACTIVE AGENTS:")
        for a in agents:
            name = a.username or a.agent_hash[:8]
            parts.append(
                f"- {name}: quality={a.quality_score}, interactions={a.interaction_count}"
            )

    return "\n".join(parts)


# =============================================================================
# Pipeline
# =============================================================================


class ReflectionPipeline:
    """Runs the end-of-cycle reflection against a store and a model."""

    def __init__(
        self,
        storage: "SQLiteStorage",
        model: "ModelProtocol",
        config: Optional[ReflectionConfig] = None,
        now_fn: Callable[[], str] = utc_now,
    ) -> None:
        self._storage = storage
        self._model = model
        self._config = config or DEFAULT_REFLECTION_CONFIG
        self._now = now_fn

    def run(self, events: CycleEvents) -> ReflectionResult:
        """Reflect on one cycle.

        Raises:
            ModelError: if the synthesis call fails. Nothing is persisted.
        """
        config = self._config
        cycle_timestamp = self._now()
        cycle_hour = parse_datetime(cycle_timestamp, strict=True).hour

        # 1-2. History and telemetry
        recent = self._best_effort(
            "recent reflections",
            lambda: self._storage.get_recent_reflections(config.recent_reflections),
        )
        outcomes = self._best_effort(
            "recent outcomes",
            lambda: self._storage.get_recent_outcomes(
                config.outcome_window_hours, config.outcome_limit
            ),
        )
        agents = self._best_effort(
            "agent activity",
            lambda: self._storage.get_recent_agent_activity(
                config.agent_window_hours, config.agent_limit
            ),
        )

        # 3-4. Synthesis; errors propagate
        prompt = build_reflection_prompt(events, recent, outcomes, agents)
        response = self._model.generate(
            [
                ModelMessage(role="system", content=REFLECTION_SYSTEM_PROMPT),
                ModelMessage(role="user", content=prompt),
            ],
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            response_format="json",
        )

        # 5. Parse
        parsed = parse_reflection_response(response.content, config)

        # 6. Journal
        reflection_id = self._storage.save_reflection(
            cycle_timestamp=cycle_timestamp,
            cycle_hour=cycle_hour,
            posts_discovered=events.posts_discovered,
            posts_engaged=events.posts_engaged,
            attacks_cataloged=events.attacks_cataloged,
            posts_failed=events.posts_failed,
            replies_sent=events.replies_sent,
            learning_summary=parsed.learning_summary,
            knowledge_updates=json.dumps([u.to_dict() for u in parsed.knowledge_updates]),
            reflection_cost=response.estimated_cost,
        )

        # 7. Apply updates, one at a time
        applied = 0
        failed = 0
        for update in parsed.knowledge_updates:
            try:
                self._storage.upsert_knowledge(
                    update.knowledge_type,
                    update.key,
                    update.content,
                    update.structured_data,
                )
                applied += 1
            except Exception as e:
                failed += 1
                logger.error(
                    "Knowledge upsert failed for %s:%s: %s",
                    update.knowledge_type.value,
                    update.key,
                    e,
                )

        # 8. Usage accounting
        self._log_usage(response)

        logger.info(
            "memory_reflection: id=%s updates=%d failed=%d summary=%.80s",
            reflection_id,
            applied,
            failed,
            parsed.learning_summary,
        )
        return ReflectionResult(
            reflection_id=reflection_id,
            learning_summary=parsed.learning_summary,
            knowledge_updates=applied,
            failed_updates=failed,
            cost=response.estimated_cost,
        )

    def _best_effort(self, label: str, load: Callable[[], list]) -> list:
        try:
            return load()
        except Exception as e:
            logger.warning("Reflection could not load %s, continuing without: %s", label, e)
            return []

    def _log_usage(self, response: Any) -> None:
        try:
            provider = self._model.capabilities.provider
            self._storage.log_usage(
                layer=self._config.usage_layer,
                provider=provider,
                model=response.model_id or self._model.model_id,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                estimated_cost=response.estimated_cost,
            )
        except Exception as e:
            logger.warning("Failed to log reflection usage: %s", e)
