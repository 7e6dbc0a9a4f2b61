"""Event engine — one hook event in, updated counters and registry out.

``process_event`` is pure over its arguments (plus ``now``) so it can be
tested without a database. ``run_hook`` wraps it with loading and saving and
is the only place persistence errors are absorbed.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field

from moodring import db
from moodring.classifier import GIT_COMMIT, classify, command_text, is_shell_tool, truncate
from moodring.config import MoodringConfig
from moodring.forensics import classify_result
from moodring.models import (
    ActivityState,
    ClassificationResult,
    CountersRecord,
    Event,
    Phase,
    SessionRecord,
)
from moodring.registry import RegistryConfig, SessionRegistry
from moodring.streak import (
    begin_session,
    end_session,
    expire_milestone,
    record_commit,
    record_tool_call,
    update_streak,
)

logger = logging.getLogger(__name__)


@dataclass
class EventOutcome:
    classification: ClassificationResult
    session: SessionRecord
    slot_written: bool
    evicted: list[SessionRecord] = field(default_factory=list)


def registry_config(config: MoodringConfig) -> RegistryConfig:
    return RegistryConfig(
        stale_seconds=config.stale_seconds,
        linger_seconds=config.linger_seconds,
        slot_freshness_seconds=config.slot_freshness_seconds,
    )


def _conducting(registry: SessionRegistry, parent_id: str) -> ClassificationResult:
    count = len(registry.active_children(parent_id))
    return ClassificationResult(ActivityState.SUBAGENT, f"conducting {count}")


def _start_subagent(event: Event, registry: SessionRegistry, now: float) -> ClassificationResult:
    child_id = event.subagent_id or f"{event.session_id}-sub-{int(now * 1000)}"
    desc = event.tool_input.get("description") or event.tool_input.get("prompt") or "subagent"
    registry.observe(
        child_id,
        ActivityState.THINKING,
        truncate(str(desc)),
        now,
        cwd=event.cwd,
        parent_session_id=event.session_id,
    )
    return _conducting(registry, event.session_id)


def _stop_subagent(event: Event, registry: SessionRegistry, now: float) -> ClassificationResult:
    children = registry.active_children(event.session_id)
    target = registry.get(event.subagent_id) if event.subagent_id else None
    if target is None and children:
        target = children[-1]
    if target is not None and not target.stopped:
        registry.observe(target.session_id, ActivityState.HAPPY, "done", now, stopped=True)

    if registry.active_children(event.session_id):
        return _conducting(registry, event.session_id)
    return ClassificationResult(ActivityState.THINKING, "subagent finished")


def classify_event(
    event: Event, counters: CountersRecord, registry: SessionRegistry, now: float
) -> tuple[ClassificationResult, bool]:
    """Decide the state for ``event`` and update counters. Returns (result, stopped)."""
    phase = event.phase

    if phase == Phase.PRE_TOOL:
        record_tool_call(counters, event.tool_name, event.tool_input)
        return classify(event.tool_name, event.tool_input), False

    if phase == Phase.POST_TOOL:
        res = event.result
        result = classify_result(
            event.tool_name,
            event.tool_input,
            res.stdout,
            res.error_flag,
            stderr=res.stderr,
            interrupted=res.interrupted,
            exit_code=res.exit_code,
        )
        update_streak(counters, result.is_failure, now)
        if (
            not result.is_failure
            and is_shell_tool(event.tool_name)
            and GIT_COMMIT.search(command_text(event.tool_input))
        ):
            record_commit(counters)
        return result, False

    if phase == Phase.TURN_START:
        return ClassificationResult(ActivityState.THINKING, "thinking"), False

    if phase == Phase.TURN_END:
        end_session(counters, now)
        registry.stop_children(event.session_id, now)
        return ClassificationResult(ActivityState.HAPPY, "all done!"), True

    if phase == Phase.NOTIFY:
        return ClassificationResult(ActivityState.WAITING, "needs attention"), False

    if phase == Phase.SUBAGENT_START:
        return _start_subagent(event, registry, now), False

    if phase == Phase.SUBAGENT_STOP:
        return _stop_subagent(event, registry, now), False

    return ClassificationResult(ActivityState.THINKING, "", diagnostic=f"unhandled phase {phase}"), False


def process_event(
    event: Event,
    counters: CountersRecord,
    registry: SessionRegistry,
    now: float,
    milestone_window: float = 8.0,
) -> EventOutcome:
    """Apply one event to in-memory counters and registry."""
    begin_session(counters, event.session_id, now)
    expire_milestone(counters, now, milestone_window)

    result, stopped = classify_event(event, counters, registry, now)
    if not result.ok:
        logger.info("Classifier fell back for %s: %s", event.tool_name, result.diagnostic)

    evicted = registry.evict(now)
    record = registry.observe(
        event.session_id,
        result.state,
        result.detail,
        now,
        cwd=event.cwd,
        stopped=stopped,
    )
    slot_written = registry.claim(event.session_id, now)
    return EventOutcome(
        classification=result,
        session=record,
        slot_written=slot_written,
        evicted=evicted,
    )


def load_registry(config: MoodringConfig) -> SessionRegistry:
    """Registry from disk; an unreadable database yields an empty one."""
    try:
        db.init_db(config.db_path)
        sessions = db.load_sessions(config.db_path)
        slot = db.load_slot(config.db_path)
    except (sqlite3.Error, OSError) as e:
        logger.warning("Could not read sessions from %s: %s", config.db_path, e)
        sessions, slot = {}, None
    return SessionRegistry(sessions, slot, registry_config(config))


def save_registry(config: MoodringConfig, registry: SessionRegistry, evicted: list[SessionRecord]) -> None:
    try:
        db.save_sessions(
            config.db_path,
            registry.changed(),
            [r.session_id for r in evicted],
        )
        if registry.slot is not None:
            db.save_slot(config.db_path, registry.slot)
    except (sqlite3.Error, OSError) as e:
        logger.warning("Dropped session write to %s: %s", config.db_path, e)


def load_counters(config: MoodringConfig) -> CountersRecord:
    try:
        db.init_db(config.db_path)
        return db.load_counters(config.db_path)
    except (sqlite3.Error, OSError) as e:
        logger.warning("Could not read counters from %s: %s", config.db_path, e)
        return CountersRecord()


def run_hook(event: Event, config: MoodringConfig, now: float) -> EventOutcome:
    """Load state, apply ``event``, persist. Persistence failures are dropped."""
    counters = load_counters(config)
    registry = load_registry(config)
    outcome = process_event(event, counters, registry, now, config.milestone_window_seconds)

    save_registry(config, registry, outcome.evicted)
    try:
        db.save_counters(config.db_path, counters)
    except (sqlite3.Error, OSError) as e:
        logger.warning("Dropped counters write to %s: %s", config.db_path, e)
    return outcome


def tick_registry(config: MoodringConfig, now: float) -> SessionRegistry:
    """One consumer-loop pass: age out sessions even when no events arrive."""
    registry = load_registry(config)
    evicted = registry.evict(now)
    if evicted:
        save_registry(config, registry, evicted)
    return registry
