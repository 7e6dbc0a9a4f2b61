"""Streak, milestone and counters bookkeeping.

All functions mutate and return the CountersRecord they are given. Nothing
here touches the database; the engine loads the record before an event and
persists it afterwards.
"""

from __future__ import annotations

from datetime import datetime, timezone

from moodring.classifier import file_basename, is_subagent_tool, tool_category
from moodring.models import CountersRecord, DailyAggregate, Milestone, SessionTally

MILESTONES = (10, 25, 50, 100, 200, 500)
MILESTONE_WINDOW_SECONDS = 8.0


def default_counters() -> CountersRecord:
    return CountersRecord()


def update_streak(counters: CountersRecord, is_failure: bool, now: float) -> CountersRecord:
    """Advance or break the success streak after a classified tool result."""
    if is_failure:
        counters.broken_streak = counters.streak
        counters.broken_streak_at = now
        counters.streak = 0
        counters.total_errors += 1
        return counters

    counters.streak += 1
    if counters.streak > counters.best_streak:
        counters.best_streak = counters.streak
    if counters.streak in MILESTONES:
        counters.recent_milestone = Milestone(kind="streak", value=counters.streak, at=now)
    return counters


def milestone_is_fresh(
    counters: CountersRecord, now: float, window: float = MILESTONE_WINDOW_SECONDS
) -> bool:
    milestone = counters.recent_milestone
    return milestone is not None and now - milestone.at <= window


def expire_milestone(
    counters: CountersRecord, now: float, window: float = MILESTONE_WINDOW_SECONDS
) -> CountersRecord:
    """Drop a milestone once it is older than ``window`` so it is celebrated once."""
    if counters.recent_milestone is not None and not milestone_is_fresh(counters, now, window):
        counters.recent_milestone = None
    return counters


def utc_date(now: float) -> str:
    return datetime.fromtimestamp(now, tz=timezone.utc).date().isoformat()


def _fold_session_into_records(counters: CountersRecord, now: float) -> None:
    tally = counters.session
    records = counters.records
    if tally.started_at:
        duration = max(0.0, now - tally.started_at)
        records.longest_session_seconds = max(records.longest_session_seconds, duration)
        counters.daily.cumulative_seconds += duration
    records.most_files_edited = max(records.most_files_edited, len(tally.files_edited))
    records.most_subagents = max(records.most_subagents, tally.subagent_count)


def begin_session(counters: CountersRecord, session_id: str, now: float) -> CountersRecord:
    """Roll the daily aggregate and start a new tally when the session changes."""
    today = utc_date(now)
    if counters.daily.date != today:
        counters.daily = DailyAggregate(date=today)

    if counters.session.session_id != session_id:
        if counters.session.session_id:
            _fold_session_into_records(counters, now)
        counters.daily.session_count += 1
        counters.session = SessionTally(session_id=session_id, started_at=now)
    elif not counters.session.started_at:
        # Same session resumed after a turn end
        counters.session.started_at = now
    return counters


def end_session(counters: CountersRecord, now: float) -> CountersRecord:
    """Fold the current tally into records when its session stops."""
    _fold_session_into_records(counters, now)
    # Keep the id so the next event of this session is not counted as new
    counters.session.started_at = 0.0
    return counters


def record_tool_call(counters: CountersRecord, tool_name: str, tool_input: dict) -> CountersRecord:
    """Count a tool invocation and remember which files it touched."""
    counters.total_tool_calls += 1
    counters.session.tool_calls += 1

    if tool_category(tool_name) == "edit":
        base = file_basename(tool_input)
        if base:
            if base not in counters.session.files_edited:
                counters.session.files_edited.append(base)
            counters.frequent_files[base] = counters.frequent_files.get(base, 0) + 1

    if is_subagent_tool(tool_name):
        counters.session.subagent_count += 1
        counters.records.most_subagents = max(
            counters.records.most_subagents, counters.session.subagent_count
        )
    return counters


def record_commit(counters: CountersRecord) -> CountersRecord:
    counters.session.commit_count += 1
    return counters


def session_elapsed(counters: CountersRecord, now: float) -> float:
    tally = counters.session
    return max(0.0, now - tally.started_at) if tally.started_at else 0.0


def top_files(counters: CountersRecord, limit: int = 5) -> list[tuple[str, int]]:
    ranked = sorted(counters.frequent_files.items(), key=lambda kv: (-kv[1], kv[0]))
    return ranked[:limit]
