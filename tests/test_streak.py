"""Tests for streaks, milestones and counters bookkeeping."""

import pytest

from moodring.models import CountersRecord
from moodring.streak import (
    MILESTONES,
    begin_session,
    end_session,
    expire_milestone,
    milestone_is_fresh,
    record_tool_call,
    top_files,
    update_streak,
)


@pytest.mark.parametrize("n", [1, 9, 10, 11, 25, 26, 50, 100, 200, 500])
def test_consecutive_successes(n, now):
    counters = CountersRecord()
    for i in range(n):
        update_streak(counters, False, now + i)
    assert counters.streak == n
    assert counters.best_streak >= n
    reached_now = counters.recent_milestone is not None and counters.recent_milestone.at == now + n - 1
    assert reached_now == (n in MILESTONES)


def test_failure_resets_and_records_broken_streak(now):
    counters = CountersRecord()
    for i in range(7):
        update_streak(counters, False, now + i)
    update_streak(counters, True, now + 10)
    assert counters.streak == 0
    assert counters.broken_streak == 7
    assert counters.broken_streak_at == now + 10
    assert counters.best_streak == 7
    assert counters.total_errors == 1


def test_best_streak_never_decreases(now):
    counters = CountersRecord()
    for i in range(5):
        update_streak(counters, False, now + i)
    update_streak(counters, True, now + 5)
    for i in range(3):
        update_streak(counters, False, now + 6 + i)
    assert counters.streak == 3
    assert counters.best_streak == 5


def test_milestone_expires_after_window(now):
    counters = CountersRecord()
    for i in range(10):
        update_streak(counters, False, now)
    assert milestone_is_fresh(counters, now + 8)
    expire_milestone(counters, now + 8)
    assert counters.recent_milestone is not None
    expire_milestone(counters, now + 8.5)
    assert counters.recent_milestone is None


def test_begin_session_rolls_daily_aggregate(now):
    counters = CountersRecord()
    begin_session(counters, "a", now)
    begin_session(counters, "a", now + 5)
    assert counters.daily.session_count == 1

    begin_session(counters, "b", now + 60)
    assert counters.daily.session_count == 2
    assert counters.daily.cumulative_seconds == 60
    assert counters.records.longest_session_seconds == 60

    begin_session(counters, "b", now + 86400)
    assert counters.daily.date == "2026-03-15"
    assert counters.daily.session_count == 0


def test_end_session_folds_duration(now):
    counters = CountersRecord()
    begin_session(counters, "a", now)
    end_session(counters, now + 120)
    assert counters.daily.cumulative_seconds == 120
    assert counters.session.started_at == 0.0
    # A later turn of the same session starts timing again
    begin_session(counters, "a", now + 300)
    assert counters.session.started_at == now + 300
    assert counters.daily.session_count == 1


def test_record_tool_call_tracks_files_and_subagents():
    counters = CountersRecord()
    record_tool_call(counters, "Edit", {"file_path": "/a/main.py"})
    record_tool_call(counters, "Write", {"file_path": "/b/main.py"})
    record_tool_call(counters, "Edit", {"file_path": "/a/util.py"})
    record_tool_call(counters, "Read", {"file_path": "/a/other.py"})
    record_tool_call(counters, "Task", {"description": "look around"})

    assert counters.total_tool_calls == 5
    assert counters.session.files_edited == ["main.py", "util.py"]
    assert counters.frequent_files == {"main.py": 2, "util.py": 1}
    assert counters.session.subagent_count == 1
    assert counters.records.most_subagents == 1
    assert top_files(counters) == [("main.py", 2), ("util.py", 1)]
