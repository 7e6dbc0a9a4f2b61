"""SQLite database layer — durable counters, session records and the shared slot.

Hook processes and the consumer loop share state only through this file.
There is no locking beyond SQLite's own; concurrent writers race and the
last write wins.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

from moodring.models import (
    ActivityState,
    CountersRecord,
    DailyAggregate,
    Milestone,
    Records,
    SessionRecord,
    SessionTally,
    SharedSlot,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    session_id TEXT PRIMARY KEY,
    created_at REAL NOT NULL,
    last_update_at REAL NOT NULL,
    state TEXT NOT NULL,
    detail TEXT DEFAULT '',
    stopped INTEGER DEFAULT 0,
    stopped_at REAL DEFAULT 0,
    cwd TEXT DEFAULT '',
    parent_session_id TEXT,
    label TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS shared_slot (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    session_id TEXT NOT NULL,
    state TEXT NOT NULL,
    detail TEXT DEFAULT '',
    timestamp REAL NOT NULL,
    stopped INTEGER DEFAULT 0,
    label TEXT DEFAULT '',
    cwd TEXT DEFAULT '',
    parent_session_id TEXT
);

CREATE TABLE IF NOT EXISTS counters (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    streak INTEGER DEFAULT 0,
    best_streak INTEGER DEFAULT 0,
    broken_streak INTEGER DEFAULT 0,
    broken_streak_at REAL DEFAULT 0,
    total_tool_calls INTEGER DEFAULT 0,
    total_errors INTEGER DEFAULT 0,
    milestone_kind TEXT,
    milestone_value INTEGER,
    milestone_at REAL,
    session_id TEXT DEFAULT '',
    session_started_at REAL DEFAULT 0,
    session_tool_calls INTEGER DEFAULT 0,
    session_files_edited TEXT DEFAULT '[]',
    session_subagent_count INTEGER DEFAULT 0,
    session_commit_count INTEGER DEFAULT 0,
    longest_session_seconds REAL DEFAULT 0,
    most_subagents INTEGER DEFAULT 0,
    most_files_edited INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS daily_stats (
    date TEXT PRIMARY KEY,
    session_count INTEGER DEFAULT 0,
    cumulative_seconds REAL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS frequent_files (
    file_name TEXT PRIMARY KEY,
    edit_count INTEGER DEFAULT 0
);
"""


def init_db(db_path: Path) -> None:
    """Create tables if they don't exist, then run any needed migrations."""
    con = sqlite3.connect(db_path)
    try:
        con.executescript(_SCHEMA)
        con.commit()
    finally:
        con.close()
    _migrate_db(db_path)


def _migrate_db(db_path: Path) -> None:
    """Add columns that may be missing from older databases."""
    con = sqlite3.connect(db_path)
    try:
        cols = {row[1] for row in con.execute("PRAGMA table_info(counters)").fetchall()}
        if "session_commit_count" not in cols:
            con.execute("ALTER TABLE counters ADD COLUMN session_commit_count INTEGER DEFAULT 0")
        cols = {row[1] for row in con.execute("PRAGMA table_info(sessions)").fetchall()}
        if "label" not in cols:
            con.execute("ALTER TABLE sessions ADD COLUMN label TEXT DEFAULT ''")
        con.commit()
    finally:
        con.close()


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Get a connection with row_factory = sqlite3.Row."""
    con = sqlite3.connect(db_path, timeout=1.0)
    con.row_factory = sqlite3.Row
    return con


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------


def load_counters(db_path: Path) -> CountersRecord:
    """Read the counters record; an empty database yields fresh counters."""
    con = get_connection(db_path)
    try:
        row = con.execute("SELECT * FROM counters WHERE id = 1").fetchone()
        if row is None:
            counters = CountersRecord()
        else:
            milestone = None
            if row["milestone_kind"] is not None:
                milestone = Milestone(
                    kind=row["milestone_kind"],
                    value=row["milestone_value"] or 0,
                    at=row["milestone_at"] or 0.0,
                )
            counters = CountersRecord(
                streak=row["streak"],
                best_streak=row["best_streak"],
                broken_streak=row["broken_streak"],
                broken_streak_at=row["broken_streak_at"],
                total_tool_calls=row["total_tool_calls"],
                total_errors=row["total_errors"],
                recent_milestone=milestone,
                session=SessionTally(
                    session_id=row["session_id"] or "",
                    started_at=row["session_started_at"] or 0.0,
                    tool_calls=row["session_tool_calls"] or 0,
                    files_edited=_json_list(row["session_files_edited"]),
                    subagent_count=row["session_subagent_count"] or 0,
                    commit_count=row["session_commit_count"] or 0,
                ),
                records=Records(
                    longest_session_seconds=row["longest_session_seconds"] or 0.0,
                    most_subagents=row["most_subagents"] or 0,
                    most_files_edited=row["most_files_edited"] or 0,
                ),
            )

        daily = con.execute(
            "SELECT date, session_count, cumulative_seconds FROM daily_stats "
            "ORDER BY date DESC LIMIT 1"
        ).fetchone()
        if daily is not None:
            counters.daily = DailyAggregate(
                date=daily["date"],
                session_count=daily["session_count"],
                cumulative_seconds=daily["cumulative_seconds"],
            )

        counters.frequent_files = {
            r["file_name"]: r["edit_count"]
            for r in con.execute("SELECT file_name, edit_count FROM frequent_files")
        }
        return counters
    finally:
        con.close()


def save_counters(db_path: Path, counters: CountersRecord) -> None:
    """Write the whole counters record in a single transaction."""
    milestone = counters.recent_milestone
    tally = counters.session
    records = counters.records
    con = sqlite3.connect(db_path, timeout=1.0)
    try:
        con.execute(
            """INSERT OR REPLACE INTO counters (
                id, streak, best_streak, broken_streak, broken_streak_at,
                total_tool_calls, total_errors,
                milestone_kind, milestone_value, milestone_at,
                session_id, session_started_at, session_tool_calls,
                session_files_edited, session_subagent_count, session_commit_count,
                longest_session_seconds, most_subagents, most_files_edited
            ) VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                counters.streak,
                counters.best_streak,
                counters.broken_streak,
                counters.broken_streak_at,
                counters.total_tool_calls,
                counters.total_errors,
                milestone.kind if milestone else None,
                milestone.value if milestone else None,
                milestone.at if milestone else None,
                tally.session_id,
                tally.started_at,
                tally.tool_calls,
                json.dumps(tally.files_edited),
                tally.subagent_count,
                tally.commit_count,
                records.longest_session_seconds,
                records.most_subagents,
                records.most_files_edited,
            ),
        )
        if counters.daily.date:
            con.execute(
                "INSERT OR REPLACE INTO daily_stats (date, session_count, cumulative_seconds) "
                "VALUES (?, ?, ?)",
                (
                    counters.daily.date,
                    counters.daily.session_count,
                    counters.daily.cumulative_seconds,
                ),
            )
        con.executemany(
            "INSERT OR REPLACE INTO frequent_files (file_name, edit_count) VALUES (?, ?)",
            list(counters.frequent_files.items()),
        )
        con.commit()
    finally:
        con.close()


def _json_list(raw: str | None) -> list[str]:
    try:
        value = json.loads(raw or "[]")
    except json.JSONDecodeError:
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


# ---------------------------------------------------------------------------
# Sessions and shared slot
# ---------------------------------------------------------------------------


def _row_to_session(row: sqlite3.Row) -> SessionRecord:
    return SessionRecord(
        session_id=row["session_id"],
        created_at=row["created_at"],
        last_update_at=row["last_update_at"],
        state=ActivityState.coerce(row["state"]),
        detail=row["detail"] or "",
        stopped=bool(row["stopped"]),
        stopped_at=row["stopped_at"] or 0.0,
        cwd=row["cwd"] or "",
        parent_session_id=row["parent_session_id"],
        label=row["label"] or "",
    )


def load_sessions(db_path: Path) -> dict[str, SessionRecord]:
    con = get_connection(db_path)
    try:
        rows = con.execute("SELECT * FROM sessions ORDER BY created_at").fetchall()
        return {row["session_id"]: _row_to_session(row) for row in rows}
    finally:
        con.close()


def save_sessions(
    db_path: Path, sessions: list[SessionRecord], evicted_ids: list[str] | None = None
) -> None:
    """Upsert ``sessions`` and delete ``evicted_ids`` in one transaction.

    A stopped flag already on disk is never cleared, so a slow writer cannot
    resurrect a session another process has stopped.
    """
    con = sqlite3.connect(db_path, timeout=1.0)
    try:
        con.executemany(
            """INSERT INTO sessions (
                session_id, created_at, last_update_at, state, detail,
                stopped, stopped_at, cwd, parent_session_id, label
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET
                last_update_at = excluded.last_update_at,
                state = excluded.state,
                detail = excluded.detail,
                stopped_at = CASE WHEN sessions.stopped = 1
                    THEN sessions.stopped_at ELSE excluded.stopped_at END,
                stopped = MAX(sessions.stopped, excluded.stopped),
                cwd = excluded.cwd,
                parent_session_id = excluded.parent_session_id,
                label = excluded.label""",
            [
                (
                    r.session_id,
                    r.created_at,
                    r.last_update_at,
                    r.state.value,
                    r.detail,
                    int(r.stopped),
                    r.stopped_at,
                    r.cwd,
                    r.parent_session_id,
                    r.label,
                )
                for r in sessions
            ],
        )
        if evicted_ids:
            con.executemany(
                "DELETE FROM sessions WHERE session_id = ?",
                [(sid,) for sid in evicted_ids],
            )
        con.commit()
    finally:
        con.close()


def load_slot(db_path: Path) -> SharedSlot | None:
    con = get_connection(db_path)
    try:
        row = con.execute("SELECT * FROM shared_slot WHERE id = 1").fetchone()
        if row is None:
            return None
        return SharedSlot(
            session_id=row["session_id"],
            state=ActivityState.coerce(row["state"]),
            detail=row["detail"] or "",
            timestamp=row["timestamp"],
            stopped=bool(row["stopped"]),
            label=row["label"] or "",
            cwd=row["cwd"] or "",
            parent_session_id=row["parent_session_id"],
        )
    finally:
        con.close()


def save_slot(db_path: Path, slot: SharedSlot) -> None:
    con = sqlite3.connect(db_path, timeout=1.0)
    try:
        con.execute(
            """INSERT OR REPLACE INTO shared_slot (
                id, session_id, state, detail, timestamp, stopped, label, cwd, parent_session_id
            ) VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                slot.session_id,
                slot.state.value,
                slot.detail,
                slot.timestamp,
                int(slot.stopped),
                slot.label,
                slot.cwd,
                slot.parent_session_id,
            ),
        )
        con.commit()
    finally:
        con.close()


def get_daily_history(db_path: Path, limit: int = 14) -> list[dict]:
    """Most recent daily aggregates, newest first."""
    con = get_connection(db_path)
    try:
        rows = con.execute(
            "SELECT date, session_count, cumulative_seconds FROM daily_stats "
            "ORDER BY date DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]
    finally:
        con.close()
