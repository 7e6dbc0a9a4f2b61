"""Shared test fixtures for moodring tests."""

import pytest

from moodring.config import MoodringConfig
from moodring.models import Event, Phase, ToolResult
from moodring.registry import SessionRegistry

# 2026-03-14 12:00:00 UTC
NOW = 1773489600.0


@pytest.fixture
def now():
    """A fixed wall-clock time; tests add offsets instead of sleeping."""
    return NOW


@pytest.fixture
def tmp_db(tmp_path):
    """Path to a temporary SQLite database file."""
    return tmp_path / "test-moodring.db"


@pytest.fixture
def config(tmp_db):
    """A MoodringConfig pointing at the temporary database."""
    return MoodringConfig(
        db_path=tmp_db,
        port=8788,
        log_level="WARNING",
        log_file=None,
        stale_seconds=1800.0,
        linger_seconds=15.0,
        slot_freshness_seconds=120.0,
        milestone_window_seconds=8.0,
        tick_seconds=0.25,
    )


@pytest.fixture
def config_file(tmp_path, tmp_db):
    """A YAML config file pointing at the temporary database."""
    path = tmp_path / "config.yaml"
    path.write_text(f"db_path: {tmp_db}\nlog_file: {tmp_path / 'moodring.log'}\n")
    return path


@pytest.fixture
def registry():
    """An empty in-memory session registry with default timings."""
    return SessionRegistry()


def make_event(session_id="sess-1", phase=Phase.PRE_TOOL, tool_name="", tool_input=None, cwd="/work/proj", **result):
    """Build an Event; keyword arguments beyond the basics go into its ToolResult."""
    subagent_id = result.pop("subagent_id", None)
    return Event(
        session_id=session_id,
        phase=phase,
        tool_name=tool_name,
        tool_input=tool_input or {},
        result=ToolResult(**result),
        cwd=cwd,
        subagent_id=subagent_id,
    )
