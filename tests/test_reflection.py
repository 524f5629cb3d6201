"""Tests for the reflection pipeline and its response parsing."""

import json
from unittest.mock import MagicMock

import pytest

from conftest import FailingModel, MockModel
from lore.config import ReflectionConfig
from lore.protocols import ModelError
from lore.reflection import (
    FALLBACK_SUMMARY,
    REFLECTION_SYSTEM_PROMPT,
    ReflectionPipeline,
    build_reflection_prompt,
    parse_reflection_response,
)
from lore.types import (
    AgentActivity,
    CycleEvents,
    InteractionOutcome,
    KnowledgeType,
    NotableInteraction,
    ReflectionRecord,
)

UN = KnowledgeType.USER_NARRATIVE


def _response(summary="Replies in tech landed well.", updates=None):
    return json.dumps({"learning_summary": summary, "knowledge_updates": updates or []})


def _update(key="abc123", ktype="user_narrative", content="Engages with replies", **extra):
    data = {"type": ktype, "key": key, "content": content}
    data.update(extra)
    return data


def _scenario_events():
    return CycleEvents(
        posts_discovered=12,
        posts_engaged=3,
        replies_sent=1,
        notable_interactions=[
            NotableInteraction(
                post_id="p1",
                community="tech",
                author_hash="abc123",
                score=0.9,
                action="replied",
                threat_level=0,
            )
        ],
    )


def _usage_rows(storage):
    with storage._connect() as conn:
        return conn.execute("SELECT * FROM usage_log").fetchall()


# ============================================================================
# parse_reflection_response
# ============================================================================


class TestParseReflectionResponse:
    def test_valid_response(self):
        parsed = parse_reflection_response(
            _response("Quiet cycle.", [_update(structured_data={"stance": "positive"})])
        )
        assert parsed.parse_failed is False
        assert parsed.learning_summary == "Quiet cycle."
        assert len(parsed.knowledge_updates) == 1
        update = parsed.knowledge_updates[0]
        assert update.knowledge_type is UN
        assert update.key == "abc123"
        assert update.structured_data == {"stance": "positive"}

    @pytest.mark.parametrize(
        "raw",
        [
            '{"learning_summary": "cut off mid',
            "",
            "not json at all",
            "[1, 2, 3]",
            '"just a string"',
        ],
    )
    def test_malformed_falls_back(self, raw):
        parsed = parse_reflection_response(raw)
        assert parsed.parse_failed is True
        assert parsed.learning_summary == FALLBACK_SUMMARY
        assert parsed.knowledge_updates == []

    def test_code_fence_stripped(self):
        raw = "```json\n" + _response("Fenced.") + "\n```"
        assert parse_reflection_response(raw).learning_summary == "Fenced."

    def test_bare_code_fence_stripped(self):
        raw = "```\n" + _response("Bare fence.") + "\n```"
        assert parse_reflection_response(raw).learning_summary == "Bare fence."

    def test_summary_clamped(self):
        parsed = parse_reflection_response(_response("x" * 900))
        assert len(parsed.learning_summary) == 500

    def test_missing_summary_uses_fallback_text(self):
        parsed = parse_reflection_response(json.dumps({"knowledge_updates": [_update()]}))
        assert parsed.learning_summary == FALLBACK_SUMMARY
        assert len(parsed.knowledge_updates) == 1

    def test_only_first_five_candidates_considered(self):
        updates = [_update(key=f"k{i}") for i in range(8)]
        parsed = parse_reflection_response(_response(updates=updates))
        assert [u.key for u in parsed.knowledge_updates] == ["k0", "k1", "k2", "k3", "k4"]

    def test_invalid_candidates_dropped(self):
        updates = [
            _update(ktype="gossip"),
            _update(key=""),
            _update(content=""),
            "not an object",
            _update(key="good"),
            _update(key="late-but-valid"),
        ]
        parsed = parse_reflection_response(_response(updates=updates))
        # Invalid ones still count toward the first five
        assert [u.key for u in parsed.knowledge_updates] == ["good"]

    def test_key_and_content_truncated(self):
        parsed = parse_reflection_response(
            _response(updates=[_update(key="k" * 300, content="c" * 700)])
        )
        update = parsed.knowledge_updates[0]
        assert len(update.key) == 200
        assert len(update.content) == 500

    def test_non_object_structured_data_ignored(self):
        parsed = parse_reflection_response(
            _response(updates=[_update(structured_data=["a", "b"])])
        )
        assert parsed.knowledge_updates[0].structured_data is None

    def test_non_list_updates_ignored(self):
        parsed = parse_reflection_response(
            json.dumps({"learning_summary": "Ok.", "knowledge_updates": "none"})
        )
        assert parsed.parse_failed is False
        assert parsed.knowledge_updates == []

    def test_custom_limits(self):
        config = ReflectionConfig(max_updates=1, max_summary_chars=5)
        parsed = parse_reflection_response(
            _response("Longer summary", [_update(key="a"), _update(key="b")]), config
        )
        assert parsed.learning_summary == "Longe"
        assert [u.key for u in parsed.knowledge_updates] == ["a"]


# ============================================================================
# build_reflection_prompt
# ============================================================================


class TestBuildReflectionPrompt:
    def test_counters_always_present(self):
        prompt = build_reflection_prompt(CycleEvents(), [], [], [])
        assert "THIS CYCLE:" in prompt
        assert "- Posts discovered: 0" in prompt
        assert "- Replies sent: 0" in prompt
        assert "NOTABLE INTERACTIONS" not in prompt
        assert "RECENT REFLECTIONS" not in prompt

    def test_all_sections(self):
        events = _scenario_events()
        events.notable_interactions[0].topics = ["rust", "tooling"]
        events.notable_interactions[0].content_summary = "Asked about build times"
        recent = [
            ReflectionRecord(
                id=1,
                cycle_timestamp="2026-03-01T11:00:00+00:00",
                cycle_hour=11,
                learning_summary="Earlier learning.",
            )
        ]
        outcomes = [InteractionOutcome("replied", "tech", "rust,tooling")]
        agents = [AgentActivity("deadbeefcafe", None, 0.8, 7)]

        prompt = build_reflection_prompt(events, recent, outcomes, agents)

        assert prompt.index("RECENT REFLECTIONS:") < prompt.index("THIS CYCLE:")
        assert "- [2026-03-01T11:00:00+00:00] Earlier learning." in prompt
        assert "- Posts discovered: 12" in prompt
        assert (
            '- [replied] tech author:abc123 score:0.9 threat:0 topics:[rust,tooling] '
            '"Asked about build times"'
        ) in prompt
        assert "- replied in tech: rust,tooling" in prompt
        assert "- deadbeef: quality=0.8, interactions=7" in prompt


# ============================================================================
# ReflectionPipeline
# ============================================================================


class TestReflectionPipeline:
    def test_end_to_end_new_record(self, storage, clock):
        model = MockModel(_response("Replies in tech landed well.", [_update()]))
        events = _scenario_events()
        events.attacks_cataloged = 1
        events.posts_failed = 2
        result = ReflectionPipeline(storage, model, now_fn=clock).run(events)

        reflections = storage.get_recent_reflections()
        assert len(reflections) == 1
        r = reflections[0]
        assert r.id == result.reflection_id
        assert (
            r.posts_discovered,
            r.posts_engaged,
            r.attacks_cataloged,
            r.posts_failed,
            r.replies_sent,
        ) == (12, 3, 1, 2, 1)
        assert r.cycle_hour == 12
        assert r.learning_summary == "Replies in tech landed well."
        assert json.loads(r.knowledge_updates) == [_update()]
        assert r.reflection_cost == pytest.approx(model.cost)

        record = storage.get_knowledge(UN, "abc123")
        assert record.confidence == pytest.approx(0.3)
        assert result.knowledge_updates == 1
        assert result.failed_updates == 0

    def test_end_to_end_reinforces_existing(self, storage, clock):
        storage.upsert_knowledge(UN, "abc123", "Engages with replies")
        model = MockModel(_response(updates=[_update()]))

        ReflectionPipeline(storage, model, now_fn=clock).run(_scenario_events())

        record = storage.get_knowledge(UN, "abc123")
        assert record.confidence == pytest.approx(0.37)
        assert record.evidence_count == 2

    def test_model_called_once_with_json_mode(self, storage, clock):
        model = MockModel(_response())
        ReflectionPipeline(storage, model, now_fn=clock).run(_scenario_events())

        assert len(model.calls) == 1
        call = model.calls[0]
        assert call["temperature"] == 0.4
        assert call["max_tokens"] == 1500
        assert call["response_format"] == "json"
        assert call["messages"][0].role == "system"
        assert call["messages"][0].content == REFLECTION_SYSTEM_PROMPT
        assert "- Posts discovered: 12" in call["messages"][1].content

    def test_malformed_response_still_journals(self, storage, clock):
        model = MockModel('{"learning_summary": "truncated outp')
        result = ReflectionPipeline(storage, model, now_fn=clock).run(_scenario_events())

        reflections = storage.get_recent_reflections()
        assert len(reflections) == 1
        assert reflections[0].learning_summary == FALLBACK_SUMMARY
        assert json.loads(reflections[0].knowledge_updates) == []
        assert result.knowledge_updates == 0
        assert storage.list_knowledge() == []

    def test_model_error_propagates_and_writes_nothing(self, storage, clock):
        model = FailingModel("timeout")

        with pytest.raises(ModelError) as exc_info:
            ReflectionPipeline(storage, model, now_fn=clock).run(_scenario_events())

        assert exc_info.value.error_class == "timeout"
        assert storage.get_recent_reflections() == []
        assert storage.list_knowledge() == []
        assert _usage_rows(storage) == []

    def test_one_failing_upsert_does_not_block_others(self, storage, clock, caplog):
        model = MockModel(
            _response(updates=[_update(key="first"), _update(key="second"), _update(key="third")])
        )
        real_upsert = storage.upsert_knowledge

        def flaky_upsert(ktype, key, *args, **kwargs):
            if key == "second":
                raise RuntimeError("constraint violated")
            return real_upsert(ktype, key, *args, **kwargs)

        storage.upsert_knowledge = flaky_upsert
        result = ReflectionPipeline(storage, model, now_fn=clock).run(_scenario_events())

        assert result.knowledge_updates == 2
        assert result.failed_updates == 1
        assert storage.get_knowledge(UN, "first") is not None
        assert storage.get_knowledge(UN, "second") is None
        assert storage.get_knowledge(UN, "third") is not None
        assert len(storage.get_recent_reflections()) == 1
        assert "Knowledge upsert failed for user_narrative:second" in caplog.text

    def test_usage_logged(self, storage, clock):
        model = MockModel(_response(), provider="anthropic", model_id="claude-haiku-4-5-20251001")
        ReflectionPipeline(storage, model, now_fn=clock).run(_scenario_events())

        rows = _usage_rows(storage)
        assert len(rows) == 1
        row = rows[0]
        assert row["layer"] == "memory_reflect"
        assert row["provider"] == "anthropic"
        assert row["model"] == "claude-haiku-4-5-20251001"
        assert row["input_tokens"] == 120
        assert row["output_tokens"] == 40
        assert row["date"] == "2026-03-01"

    def test_usage_log_failure_swallowed(self, storage, clock, caplog):
        storage.log_usage = MagicMock(side_effect=RuntimeError("usage table gone"))
        model = MockModel(_response(updates=[_update()]))

        result = ReflectionPipeline(storage, model, now_fn=clock).run(_scenario_events())

        assert result.knowledge_updates == 1
        assert "Failed to log reflection usage" in caplog.text

    def test_best_effort_reads_degrade_to_empty(self, storage, clock, caplog):
        storage.get_recent_reflections = MagicMock(side_effect=RuntimeError("locked"))
        storage.get_recent_outcomes = MagicMock(side_effect=RuntimeError("no table"))
        storage.get_recent_agent_activity = MagicMock(side_effect=RuntimeError("no table"))
        model = MockModel(_response())

        result = ReflectionPipeline(storage, model, now_fn=clock).run(_scenario_events())

        assert result.reflection_id > 0
        prompt = model.calls[0]["messages"][1].content
        assert "RECENT REFLECTIONS" not in prompt
        assert "RECENT OUTCOMES" not in prompt
        assert "ACTIVE AGENTS" not in prompt
        assert caplog.text.count("continuing without") == 3

    def test_prior_reflections_feed_next_prompt(self, storage, clock):
        model = MockModel(_response("First cycle learning."))
        pipeline = ReflectionPipeline(storage, model, now_fn=clock)
        pipeline.run(_scenario_events())

        clock.advance(hours=1)
        model.content = _response("Second cycle learning.")
        pipeline.run(_scenario_events())

        second_prompt = model.calls[1]["messages"][1].content
        assert "First cycle learning." in second_prompt
        assert [r.learning_summary for r in storage.get_recent_reflections()] == [
            "Second cycle learning.",
            "First cycle learning.",
        ]

    def test_telemetry_windows(self, storage, clock):
        with storage._connect() as conn:
            conn.execute(
                "INSERT INTO interaction_outcomes (hobbot_action, submolt, topic_signals, "
                "created_at) VALUES ('replied', 'tech', 'rust', '2026-03-01T11:30:00.000000+00:00')"
            )
            conn.execute(
                "INSERT INTO interaction_outcomes (hobbot_action, submolt, topic_signals, "
                "created_at) VALUES ('skipped', 'old', NULL, '2026-03-01T09:00:00.000000+00:00')"
            )
            conn.execute(
                "INSERT INTO agent_profiles (agent_hash, username, quality_score, "
                "interaction_count, last_active_at) VALUES "
                "('a1', 'alice', 0.9, 4, '2026-03-01T11:00:00.000000+00:00')"
            )
            conn.execute(
                "INSERT INTO agent_profiles (agent_hash, username, quality_score, "
                "interaction_count, last_active_at) VALUES "
                "('a2', 'bob', 0.2, 9, '2026-02-27T11:00:00.000000+00:00')"
            )
        model = MockModel(_response())

        ReflectionPipeline(storage, model, now_fn=clock).run(_scenario_events())

        prompt = model.calls[0]["messages"][1].content
        assert "- replied in tech: rust" in prompt
        assert "skipped in old" not in prompt
        assert "- alice: quality=0.9, interactions=4" in prompt
        assert "bob" not in prompt

    def test_config_from_env(self, monkeypatch):
        monkeypatch.setenv("LORE_REFLECT_TEMPERATURE", "0.1")
        monkeypatch.setenv("LORE_REFLECT_MAX_TOKENS", "not-a-number")
        config = ReflectionConfig.from_env()
        assert config.temperature == 0.1
        assert config.max_tokens == 1500
