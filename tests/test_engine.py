"""Tests for the event engine — phases, counters, registry and persistence."""

from conftest import make_event

from moodring import db
from moodring.engine import process_event, run_hook, tick_registry
from moodring.models import ActivityState, CountersRecord, Phase

S = ActivityState


def test_pre_tool_classifies_and_claims_slot(registry, now):
    counters = CountersRecord()
    event = make_event(tool_name="Edit", tool_input={"file_path": "/w/proj/app.py"})
    outcome = process_event(event, counters, registry, now)

    assert outcome.classification.state == S.CODING
    assert outcome.session.detail == "editing app.py"
    assert outcome.slot_written
    assert registry.slot.session_id == "sess-1"
    assert counters.total_tool_calls == 1
    assert counters.daily.session_count == 1


def test_post_tool_failure_breaks_streak(registry, now):
    counters = CountersRecord(streak=4, best_streak=4)
    event = make_event(
        phase=Phase.POST_TOOL,
        tool_name="Bash",
        tool_input={"command": "pytest"},
        stdout="2 tests failed",
    )
    outcome = process_event(event, counters, registry, now)
    assert outcome.classification.state == S.ERROR
    assert counters.streak == 0
    assert counters.broken_streak == 4
    assert counters.best_streak == 4


def test_ratelimited_counts_as_failure(registry, now):
    counters = CountersRecord(streak=2)
    event = make_event(phase=Phase.POST_TOOL, tool_name="Bash", stdout="429 Too Many Requests", error_flag=True)
    outcome = process_event(event, counters, registry, now)
    assert outcome.classification.state == S.RATELIMITED
    assert counters.streak == 0
    assert counters.total_errors == 1


def test_successful_commit_is_counted(registry, now):
    counters = CountersRecord()
    event = make_event(
        phase=Phase.POST_TOOL,
        tool_name="Bash",
        tool_input={"command": "git commit -m 'fix'"},
        stdout="[main abc123] fix",
    )
    process_event(event, counters, registry, now)
    assert counters.session.commit_count == 1
    assert counters.streak == 1


def test_turn_start_notify_and_turn_end(registry, now):
    counters = CountersRecord()
    assert process_event(make_event(phase=Phase.TURN_START), counters, registry, now).session.state == S.THINKING

    waiting = process_event(make_event(phase=Phase.NOTIFY), counters, registry, now + 1)
    assert waiting.session.state == S.WAITING
    assert waiting.session.detail == "needs attention"

    done = process_event(make_event(phase=Phase.TURN_END), counters, registry, now + 2)
    assert done.session.state == S.HAPPY
    assert done.session.detail == "all done!"
    assert done.session.stopped
    assert registry.slot.stopped


def test_subagent_lifecycle(registry, now):
    counters = CountersRecord()
    process_event(make_event(phase=Phase.TURN_START), counters, registry, now)

    start = make_event(
        phase=Phase.SUBAGENT_START,
        tool_input={"description": "scan the tests"},
        subagent_id="agent-7",
    )
    outcome = process_event(start, counters, registry, now + 1)
    assert outcome.session.state == S.SUBAGENT
    assert outcome.session.detail == "conducting 1"
    child = registry.get("agent-7")
    assert child.parent_session_id == "sess-1"
    assert child.state == S.THINKING
    assert child.detail == "scan the tests"

    # A child's tool calls cannot hijack the parent's fresh slot
    child_tool = make_event(session_id="agent-7", tool_name="Read", tool_input={"file_path": "t.py"})
    assert not process_event(child_tool, counters, registry, now + 2).slot_written
    assert registry.slot.session_id == "sess-1"

    stop = make_event(phase=Phase.SUBAGENT_STOP)
    outcome = process_event(stop, counters, registry, now + 3)
    assert registry.get("agent-7").stopped
    assert outcome.session.state == S.THINKING
    assert outcome.session.detail == "subagent finished"


def test_turn_end_stops_children(registry, now):
    counters = CountersRecord()
    process_event(make_event(phase=Phase.SUBAGENT_START), counters, registry, now)
    process_event(make_event(phase=Phase.SUBAGENT_START), counters, registry, now + 1)
    assert len(registry.active_children("sess-1")) == 2

    process_event(make_event(phase=Phase.TURN_END), counters, registry, now + 2)
    assert registry.active_children("sess-1") == []


def test_expired_milestone_is_cleared_on_next_event(registry, now):
    counters = CountersRecord(streak=9, best_streak=9)
    post = make_event(phase=Phase.POST_TOOL, tool_name="Read", tool_input={"file_path": "a"})
    process_event(post, counters, registry, now)
    assert counters.recent_milestone.value == 10

    process_event(make_event(tool_name="Read"), counters, registry, now + 9)
    assert counters.recent_milestone is None


def test_stale_sessions_evicted_during_event(registry, now):
    counters = CountersRecord()
    process_event(make_event(session_id="old"), counters, registry, now)
    outcome = process_event(make_event(session_id="new"), counters, registry, now + 1800)
    assert [r.session_id for r in outcome.evicted] == ["old"]
    assert registry.get("old") is None


def test_run_hook_persists_state(config, now):
    run_hook(make_event(tool_name="Grep", tool_input={"pattern": "TODO"}), config, now)
    run_hook(make_event(phase=Phase.POST_TOOL, tool_name="Grep", tool_input={"pattern": "TODO"}), config, now + 1)

    sessions = db.load_sessions(config.db_path)
    assert sessions["sess-1"].state == S.SATISFIED
    assert db.load_slot(config.db_path).detail == 'found "TODO"'
    counters = db.load_counters(config.db_path)
    assert counters.total_tool_calls == 1
    assert counters.streak == 1


def test_concurrent_hooks_do_not_clobber_each_other(config, now):
    run_hook(make_event(session_id="a", tool_name="Read"), config, now)
    run_hook(make_event(session_id="b", tool_name="Grep"), config, now + 1)
    sessions = db.load_sessions(config.db_path)
    assert sessions["a"].state == S.READING
    assert sessions["b"].state == S.SEARCHING
    assert db.load_slot(config.db_path).session_id == "a"


def test_persistence_failure_does_not_raise(config, tmp_path, now):
    # A directory cannot be opened as a database
    config.db_path = tmp_path
    outcome = run_hook(make_event(tool_name="Edit"), config, now)
    assert outcome.classification.state == S.CODING
    assert outcome.slot_written


def test_tick_registry_evicts_without_events(config, now):
    run_hook(make_event(phase=Phase.TURN_END), config, now)
    assert "sess-1" in db.load_sessions(config.db_path)
    registry = tick_registry(config, now + 15)
    assert registry.sessions == {}
    assert db.load_sessions(config.db_path) == {}
