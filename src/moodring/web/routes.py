"""Route handlers — JSON views over the shared slot, sessions and counters."""

from __future__ import annotations

import time

from flask import Blueprint, current_app, jsonify, request

from moodring import db
from moodring.engine import load_counters, tick_registry
from moodring.models import CountersRecord
from moodring.streak import milestone_is_fresh, session_elapsed, top_files

bp = Blueprint("api", __name__, url_prefix="/api")


def counters_view(counters: CountersRecord, now: float, milestone_window: float = 8.0) -> dict:
    """The counters record as renderers consume it."""
    milestone = counters.recent_milestone
    fresh = milestone_is_fresh(counters, now, milestone_window)
    return {
        "streak": counters.streak,
        "best_streak": counters.best_streak,
        "broken_streak": counters.broken_streak,
        "broken_streak_at": counters.broken_streak_at,
        "total_tool_calls": counters.total_tool_calls,
        "total_errors": counters.total_errors,
        "recent_milestone": (
            {"kind": milestone.kind, "value": milestone.value, "at": milestone.at}
            if milestone and fresh
            else None
        ),
        "daily": {
            "date": counters.daily.date,
            "session_count": counters.daily.session_count,
            "cumulative_seconds": counters.daily.cumulative_seconds,
        },
        "session": {
            "session_id": counters.session.session_id,
            "elapsed_seconds": session_elapsed(counters, now),
            "tool_calls": counters.session.tool_calls,
            "files_edited": list(counters.session.files_edited),
            "subagent_count": counters.session.subagent_count,
            "commit_count": counters.session.commit_count,
        },
        "records": {
            "longest_session_seconds": counters.records.longest_session_seconds,
            "most_subagents": counters.records.most_subagents,
            "most_files_edited": counters.records.most_files_edited,
        },
        "frequent_files": [{"file": name, "count": count} for name, count in top_files(counters)],
    }


def _now() -> float:
    # An unparseable ?now= falls back to the wall clock
    now = request.args.get("now", default=None, type=float)
    return time.time() if now is None else now


@bp.route("/state")
def state():
    """The shared display slot, or null when no session has claimed it."""
    config = current_app.config["MOODRING"]
    registry = tick_registry(config, _now())
    return jsonify(registry.slot.to_view() if registry.slot else None)


@bp.route("/sessions")
def sessions():
    """Every live session, oldest first."""
    config = current_app.config["MOODRING"]
    registry = tick_registry(config, _now())
    return jsonify(registry.views())


@bp.route("/stats")
def stats():
    """Counters plus recent daily history."""
    config = current_app.config["MOODRING"]
    now = _now()
    view = counters_view(load_counters(config), now, config.milestone_window_seconds)
    view["history"] = db.get_daily_history(config.db_path)
    return jsonify(view)
