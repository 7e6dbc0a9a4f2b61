"""Shared data models — the contract between classifiers, registry, and consumers.

Classifiers produce ClassificationResult objects. The engine folds them into
CountersRecord and SessionRecord objects, which the database layer persists
and the renderers read back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ActivityState(str, Enum):
    """Semantic activity vocabulary shared by every front-end and renderer."""

    IDLE = "idle"
    THINKING = "thinking"
    READING = "reading"
    SEARCHING = "searching"
    CODING = "coding"
    EXECUTING = "executing"
    TESTING = "testing"
    INSTALLING = "installing"
    COMMITTING = "committing"
    REVIEWING = "reviewing"
    SUBAGENT = "subagent"
    RESPONDING = "responding"
    WAITING = "waiting"
    RATELIMITED = "ratelimited"
    HAPPY = "happy"
    SATISFIED = "satisfied"
    PROUD = "proud"
    RELIEVED = "relieved"
    ERROR = "error"
    SLEEPING = "sleeping"
    CAFFEINATED = "caffeinated"

    @classmethod
    def coerce(cls, value: str | ActivityState | None) -> ActivityState:
        """Map a stored string back to a state; unknown values become IDLE."""
        if isinstance(value, ActivityState):
            return value
        try:
            return cls(str(value or "").lower())
        except ValueError:
            return cls.IDLE


COMPLETION_STATES = frozenset(
    {ActivityState.HAPPY, ActivityState.SATISFIED, ActivityState.PROUD, ActivityState.RELIEVED}
)
FAILURE_STATES = frozenset({ActivityState.ERROR, ActivityState.RATELIMITED})
LOW_ACTIVITY_STATES = frozenset(
    {ActivityState.IDLE, ActivityState.SLEEPING, ActivityState.WAITING}
)
ACTIVE_WORK_STATES = frozenset(
    {
        ActivityState.EXECUTING,
        ActivityState.CODING,
        ActivityState.READING,
        ActivityState.SEARCHING,
        ActivityState.TESTING,
        ActivityState.INSTALLING,
        ActivityState.COMMITTING,
        ActivityState.REVIEWING,
        ActivityState.SUBAGENT,
        ActivityState.RESPONDING,
    }
)


class Phase(str, Enum):
    """Where in the agent's lifecycle an event was emitted."""

    PRE_TOOL = "pre_tool"
    POST_TOOL = "post_tool"
    TURN_START = "turn_start"
    TURN_END = "turn_end"
    NOTIFY = "notify"
    SUBAGENT_START = "subagent_start"
    SUBAGENT_STOP = "subagent_stop"


@dataclass(frozen=True)
class ToolResult:
    """Raw outcome of a tool invocation, as much of it as the front-end reports."""

    stdout: str = ""
    stderr: str = ""
    error_flag: bool = False
    interrupted: bool = False
    exit_code: int | None = None


@dataclass(frozen=True)
class Event:
    """A canonical hook event. Produced by the parser, consumed by the engine."""

    session_id: str
    phase: Phase
    tool_name: str = ""
    tool_input: dict = field(default_factory=dict)
    result: ToolResult = field(default_factory=ToolResult)
    cwd: str = ""
    subagent_id: str | None = None


@dataclass(frozen=True)
class StructuralMeta:
    """Line delta of an edit, for the renderer's thought bubble."""

    added_lines: int
    removed_lines: int


@dataclass(frozen=True)
class ClassificationResult:
    """Output of the pattern and forensic classifiers.

    ``diagnostic`` is set only when the classifier fell back to a safe
    default instead of running its rules to completion.
    """

    state: ActivityState
    detail: str
    structural_meta: StructuralMeta | None = None
    diagnostic: str | None = None

    @property
    def ok(self) -> bool:
        return self.diagnostic is None

    @property
    def is_failure(self) -> bool:
        return self.state in FAILURE_STATES


@dataclass
class Milestone:
    kind: str
    value: int
    at: float


@dataclass
class DailyAggregate:
    date: str = ""
    session_count: int = 0
    cumulative_seconds: float = 0.0


@dataclass
class SessionTally:
    """Counters for the session the hooks most recently saw."""

    session_id: str = ""
    started_at: float = 0.0
    tool_calls: int = 0
    files_edited: list[str] = field(default_factory=list)
    subagent_count: int = 0
    commit_count: int = 0


@dataclass
class Records:
    longest_session_seconds: float = 0.0
    most_subagents: int = 0
    most_files_edited: int = 0


@dataclass
class CountersRecord:
    """Per-user counters that survive across hook invocations."""

    streak: int = 0
    best_streak: int = 0
    broken_streak: int = 0
    broken_streak_at: float = 0.0
    total_tool_calls: int = 0
    total_errors: int = 0
    recent_milestone: Milestone | None = None
    daily: DailyAggregate = field(default_factory=DailyAggregate)
    frequent_files: dict[str, int] = field(default_factory=dict)
    session: SessionTally = field(default_factory=SessionTally)
    records: Records = field(default_factory=Records)


@dataclass
class SessionRecord:
    """One tracked agent session (primary or delegated)."""

    session_id: str
    created_at: float
    last_update_at: float
    state: ActivityState = ActivityState.IDLE
    detail: str = ""
    stopped: bool = False
    stopped_at: float = 0.0
    cwd: str = ""
    parent_session_id: str | None = None
    label: str = ""

    def to_view(self) -> dict:
        """The record shape renderers consume."""
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "detail": self.detail,
            "timestamp": self.last_update_at,
            "stopped": self.stopped,
            "label": self.label,
            "cwd": self.cwd,
            "parent_session_id": self.parent_session_id,
        }


@dataclass
class SharedSlot:
    """The single display record that exactly one session may write."""

    session_id: str
    state: ActivityState
    detail: str
    timestamp: float
    stopped: bool = False
    label: str = ""
    cwd: str = ""
    parent_session_id: str | None = None

    @classmethod
    def from_session(cls, record: SessionRecord, now: float) -> SharedSlot:
        return cls(
            session_id=record.session_id,
            state=record.state,
            detail=record.detail,
            timestamp=now,
            stopped=record.stopped,
            label=record.label,
            cwd=record.cwd,
            parent_session_id=record.parent_session_id,
        )

    def to_view(self) -> dict:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "detail": self.detail,
            "timestamp": self.timestamp,
            "stopped": self.stopped,
            "label": self.label,
            "cwd": self.cwd,
            "parent_session_id": self.parent_session_id,
        }


@dataclass(frozen=True)
class TimelineEntry:
    state: ActivityState
    at: float
