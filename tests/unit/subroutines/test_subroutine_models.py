"""Unit tests — subroutines/models.py."""

from __future__ import annotations

import json

import pytest

from sillyagents.subroutines.models import (
    CONFIG_METADATA_KEY,
    CycleResult,
    GenerationResult,
    LoopHealth,
    LoopState,
    SubroutineConfig,
    ToolCall,
    ToolResult,
    TriggerType,
    Turn,
    TurnKind,
    TurnRole,
    config_from_metadata,
    default_config,
)


@pytest.mark.unit
class TestSubroutineConfigDefaults:
    def test_defaults(self) -> None:
        c = SubroutineConfig()
        assert c.is_subroutine is True
        assert c.trigger_type == TriggerType.TIME
        assert c.interval_seconds == 300
        assert c.heartbeat_message == "[heartbeat]"
        assert c.auto_queue_prompt == "Continue or call the finish tool if done."
        assert c.use_lorebooks is True
        assert c.use_example_messages is True
        assert c.use_summary is False
        assert c.color == "#4a90d9"
        assert c.running is False

    def test_default_config_overrides(self) -> None:
        c = default_config(running=True, interval_seconds=60)
        assert c.running is True
        assert c.interval_seconds == 60
        assert c.trigger_type == TriggerType.TIME


@pytest.mark.unit
class TestSubroutineConfigSerialisation:
    def test_to_dict_uses_camel_case(self) -> None:
        d = default_config(trigger_type=TriggerType.TOOL, tool_name="inbox").to_dict()
        assert d["triggerType"] == "tool"
        assert d["toolName"] == "inbox"
        assert d["intervalSeconds"] == 300
        assert "tool_name" not in d
        json.dumps(d)  # JSON-ready

    def test_from_dict_fills_missing_fields(self) -> None:
        c = SubroutineConfig.from_dict({"isSubroutine": True, "running": True})
        assert c.running is True
        assert c.interval_seconds == 300
        assert c.heartbeat_message == "[heartbeat]"

    def test_from_dict_keeps_unknown_trigger_as_string(self) -> None:
        c = SubroutineConfig.from_dict({"triggerType": "webhook"})
        assert c.trigger_type == "webhook"
        assert not isinstance(c.trigger_type, TriggerType)
        assert c.trigger_label == "webhook"

    def test_from_dict_bad_interval_falls_back_to_default(self) -> None:
        c = SubroutineConfig.from_dict({"intervalSeconds": "soon"})
        assert c.interval_seconds == 300

    def test_from_dict_numeric_string_interval(self) -> None:
        assert SubroutineConfig.from_dict({"intervalSeconds": "42"}).interval_seconds == 42

    def test_from_dict_infinite_interval_falls_back_to_default(self) -> None:
        c = SubroutineConfig.from_dict({"intervalSeconds": float("inf")})
        assert c.interval_seconds == 300

    @pytest.mark.parametrize("raw", ["false", "False", "0", "no", "off", 0, False])
    def test_from_dict_false_spellings(self, raw: object) -> None:
        c = SubroutineConfig.from_dict({"running": raw, "autoQueue": raw, "useLorebooks": raw})
        assert c.running is False
        assert c.auto_queue is False
        assert c.use_lorebooks is False

    @pytest.mark.parametrize("raw", ["true", "TRUE", "1", "yes", "on", 1, True])
    def test_from_dict_true_spellings(self, raw: object) -> None:
        c = SubroutineConfig.from_dict({"running": raw, "useSummary": raw})
        assert c.running is True
        assert c.use_summary is True

    def test_from_dict_unrecognised_bool_uses_default(self) -> None:
        c = SubroutineConfig.from_dict({"running": "maybe", "useLorebooks": [1]})
        assert c.running is False
        assert c.use_lorebooks is True

    def test_with_changes_string_false_stops(self) -> None:
        c = default_config(running=True).with_changes({"running": "false"})
        assert c.running is False


@pytest.mark.unit
class TestSubroutineConfigLogic:
    @pytest.mark.parametrize(
        ("interval", "expected"),
        [(1, 5.0), (5, 5.0), (0, 5.0), (-10, 5.0), (60, 60.0)],
    )
    def test_effective_interval_floor(self, interval: int, expected: float) -> None:
        assert SubroutineConfig(interval_seconds=interval).effective_interval() == expected

    def test_effective_interval_custom_floor(self) -> None:
        assert SubroutineConfig(interval_seconds=1).effective_interval(0.5) == 1.0

    def test_generation_options_forwarded(self) -> None:
        opts = SubroutineConfig(use_summary=True, use_lorebooks=False).generation_options()
        assert opts.use_summary is True
        assert opts.use_lorebooks is False
        assert opts.use_example_messages is True
        assert opts.to_dict() == {
            "useSummary": True,
            "useLorebooks": False,
            "useExampleMessages": True,
        }

    def test_validate_tool_without_name(self) -> None:
        problems = SubroutineConfig(trigger_type=TriggerType.TOOL).validate()
        assert any("toolName" in p for p in problems)

    def test_validate_api_without_url(self) -> None:
        problems = SubroutineConfig(trigger_type=TriggerType.API).validate()
        assert any("apiUrl" in p for p in problems)

    def test_validate_unknown_trigger(self) -> None:
        assert SubroutineConfig(trigger_type="webhook").validate()

    def test_validate_ok(self) -> None:
        assert SubroutineConfig().validate() == []

    def test_with_changes_accepts_both_key_styles(self) -> None:
        c = SubroutineConfig().with_changes({"intervalSeconds": 30, "auto_queue": True})
        assert c.interval_seconds == 30
        assert c.auto_queue is True

    def test_with_changes_unknown_key(self) -> None:
        with pytest.raises(KeyError):
            SubroutineConfig().with_changes({"bogus": 1})

    def test_with_changes_does_not_mutate(self) -> None:
        original = SubroutineConfig()
        original.with_changes({"running": True})
        assert original.running is False


@pytest.mark.unit
class TestConfigFromMetadata:
    def test_absent_block(self) -> None:
        assert config_from_metadata({}) is None
        assert config_from_metadata(None) is None

    def test_malformed_block(self) -> None:
        assert config_from_metadata({CONFIG_METADATA_KEY: "nope"}) is None

    def test_metadata_not_an_object(self) -> None:
        assert config_from_metadata("a string") is None  # type: ignore[arg-type]
        assert config_from_metadata([1, 2]) is None  # type: ignore[arg-type]

    def test_not_a_subroutine(self) -> None:
        assert config_from_metadata({CONFIG_METADATA_KEY: {"isSubroutine": False}}) is None

    def test_present(self) -> None:
        c = config_from_metadata({CONFIG_METADATA_KEY: {"isSubroutine": True, "running": True}})
        assert c is not None and c.running is True


@pytest.mark.unit
class TestToolResult:
    def test_str_as_is(self) -> None:
        assert ToolResult(output="new mail").as_text() == "new mail"

    def test_dict_as_json(self) -> None:
        assert json.loads(ToolResult(output={"count": 2}).as_text()) == {"count": 2}

    def test_list_as_json(self) -> None:
        assert ToolResult(output=[1, 2]).as_text() == "[1, 2]"

    def test_other_via_str(self) -> None:
        assert ToolResult(output=42).as_text() == "42"

    def test_none_is_empty(self) -> None:
        assert ToolResult().as_text() == ""

    def test_error(self) -> None:
        r = ToolResult.failure("boom")
        assert r.is_error is True
        assert r.as_text() == "boom"


@pytest.mark.unit
class TestToolCallParsing:
    def test_flat_shape(self) -> None:
        call = ToolCall.from_dict({"name": "search", "arguments": {"q": "x"}, "id": "c1"})
        assert call == ToolCall(name="search", arguments={"q": "x"}, call_id="c1")

    def test_json_string_arguments(self) -> None:
        call = ToolCall.from_dict({"name": "search", "arguments": '{"q": "x"}'})
        assert call.arguments == {"q": "x"}

    def test_openai_shape(self) -> None:
        call = ToolCall.from_dict(
            {"id": "c9", "function": {"name": "finish", "arguments": ""}}
        )
        assert call.name == "finish"
        assert call.arguments == {}
        assert call.call_id == "c9"

    def test_non_json_string_arguments_wrapped(self) -> None:
        assert ToolCall.from_dict({"name": "t", "arguments": "raw"}).arguments == {"input": "raw"}

    def test_generation_result_from_dict(self) -> None:
        result = GenerationResult.from_dict(
            {"text": "hi", "tool_calls": [{"name": "a"}, {"name": "b"}]}
        )
        assert result.has_tool_calls
        assert [c.name for c in result.tool_calls] == ["a", "b"]
        assert GenerationResult.from_dict({"text": "hi"}).has_tool_calls is False


@pytest.mark.unit
class TestTurn:
    def test_heartbeat_turn(self) -> None:
        t = Turn.heartbeat("[heartbeat]", "User")
        assert t.role == TurnRole.INCOMING
        assert t.kind == TurnKind.HEARTBEAT
        assert t.is_user is True
        assert t.name == "User"

    def test_tool_result_turn(self) -> None:
        t = Turn.tool_result(ToolCall("search", call_id="c1"), ToolResult.failure("nope"))
        assert t.role == TurnRole.TOOL
        assert t.tool_call_id == "c1"
        assert t.is_error is True
        assert t.body == "nope"

    def test_round_trip(self) -> None:
        t = Turn.continuation("go on", "User")
        assert Turn.from_dict(t.to_dict()) == t


@pytest.mark.unit
class TestRuntimeState:
    def test_loop_health_counters(self) -> None:
        h = LoopHealth()
        h.record_tick()
        h.record_skip()
        h.record_fire()
        h.record_fail("x")
        assert (h.ticks, h.skipped, h.fires, h.failures) == (1, 1, 1, 1)
        assert h.last_error == "x"
        assert h.last_tick_at is not None and h.last_fired_at is not None

    async def test_loop_state_snapshot(self) -> None:
        state = LoopState(session_id="s1", interval=5.0)
        d = state.to_dict()
        assert d["session_id"] == "s1"
        assert d["is_generating"] is False
        assert d["ticks"] == 0

    def test_cycle_result(self) -> None:
        r = CycleResult(session_id="s1")
        assert r.succeeded
        r.error = "boom"
        assert not r.succeeded
        assert r.to_dict()["error"] == "boom"
