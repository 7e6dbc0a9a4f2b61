"""Tests for the hook payload parser."""

from __future__ import annotations

import json

import pytest

from moodring.models import Phase
from moodring.parser import PayloadError, parse_event, parse_payload, resolve_phase


@pytest.mark.parametrize(
    "name, phase",
    [
        ("PreToolUse", Phase.PRE_TOOL),
        ("PostToolUse", Phase.POST_TOOL),
        ("UserPromptSubmit", Phase.TURN_START),
        ("Stop", Phase.TURN_END),
        ("SessionEnd", Phase.TURN_END),
        ("Notification", Phase.NOTIFY),
        ("SubagentStart", Phase.SUBAGENT_START),
        ("SubagentStop", Phase.SUBAGENT_STOP),
        ("post_tool", Phase.POST_TOOL),
        ("pre-tool", Phase.PRE_TOOL),
    ],
)
def test_resolve_phase(name, phase):
    assert resolve_phase(name) == phase


def test_resolve_phase_unknown():
    assert resolve_phase("Bogus") is None
    assert resolve_phase(None) is None


class TestParseEvent:
    def test_post_tool_payload(self):
        data = {
            "session_id": "abc",
            "hook_event_name": "PostToolUse",
            "tool_name": "Bash",
            "tool_input": {"command": "ls"},
            "tool_response": {"stdout": "a\nb", "stderr": "", "interrupted": False, "exit_code": 0},
            "cwd": "/home/me/proj",
        }
        event = parse_event(data)
        assert event.phase == Phase.POST_TOOL
        assert event.session_id == "abc"
        assert event.tool_input == {"command": "ls"}
        assert event.result.stdout == "a\nb"
        assert event.result.exit_code == 0
        assert event.cwd == "/home/me/proj"

    def test_cli_argument_wins_over_payload(self):
        event = parse_event({"session_id": "x", "hook_event_name": "PreToolUse"}, "Stop")
        assert event.phase == Phase.TURN_END

    def test_error_flags(self):
        event = parse_event(
            {"session_id": "x", "tool_response": {"isError": True, "content": [{"type": "text", "text": "boom"}]}},
            "PostToolUse",
        )
        assert event.result.error_flag is True
        assert event.result.stdout == "boom"

    def test_string_response_and_bad_exit_code(self):
        event = parse_event({"session_id": "x", "tool_response": "plain output"}, "post_tool")
        assert event.result.stdout == "plain output"
        event = parse_event({"session_id": "x", "tool_response": {"exitCode": "1"}}, "post_tool")
        assert event.result.exit_code is None

    def test_subagent_id(self):
        event = parse_event({"session_id": "p", "agent_id": "child-1"}, "SubagentStart")
        assert event.subagent_id == "child-1"

    def test_missing_session_uses_env(self, monkeypatch):
        monkeypatch.setenv("CLAUDE_SESSION_ID", "from-env")
        assert parse_event({}, "Notification").session_id == "from-env"

    def test_non_dict_tool_input_is_dropped(self):
        event = parse_event({"session_id": "x", "tool_input": ["a"]}, "PreToolUse")
        assert event.tool_input == {}

    def test_unknown_event_raises(self):
        with pytest.raises(PayloadError):
            parse_event({"session_id": "x", "hook_event_name": "Nope"})

    def test_unknown_event_with_tool_is_pre_tool(self):
        event = parse_event(
            {"session_id": "x", "hook_event_name": "ToolStarting", "tool_name": "Read"}
        )
        assert event.phase == Phase.PRE_TOOL
        assert event.tool_name == "Read"


def test_parse_payload_invalid_json():
    with pytest.raises(PayloadError):
        parse_payload("{not json", "PreToolUse")


def test_parse_payload_non_object():
    with pytest.raises(PayloadError):
        parse_payload(json.dumps([1, 2]), "PreToolUse")


def test_parse_payload_empty_input():
    event = parse_payload("", "UserPromptSubmit")
    assert event.phase == Phase.TURN_START


def test_parse_payload_replaces_invalid_utf8():
    raw = b'{"session_id": "s1", "tool_name": "Bash", "tool_input": {"command": "echo \xff"}}'
    event = parse_payload(raw, "PreToolUse")
    assert event.tool_input["command"] == "echo \ufffd"
    event.tool_input["command"].encode("utf-8")
