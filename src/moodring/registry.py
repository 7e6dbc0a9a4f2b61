"""Session registry — live sessions, shared-slot ownership, eviction, labels.

The registry is an explicit object: the engine loads it from the database,
mutates it for one event, and writes it back. The consumer loop does the
same on every tick so that sessions age out even when no events arrive.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass

from moodring.models import ActivityState, SessionRecord, SharedSlot

logger = logging.getLogger(__name__)

STALE_SECONDS = 1800.0
LINGER_SECONDS = 15.0
SLOT_FRESHNESS_SECONDS = 120.0
SOLO_FALLBACK_LABEL = "claude"


@dataclass
class RegistryConfig:
    stale_seconds: float = STALE_SECONDS
    linger_seconds: float = LINGER_SECONDS
    slot_freshness_seconds: float = SLOT_FRESHNESS_SECONDS


def cwd_basename(cwd: str | None) -> str:
    if not cwd:
        return ""
    return posixpath.basename(cwd.replace("\\", "/").rstrip("/"))


def is_expired(record: SessionRecord, now: float, config: RegistryConfig) -> bool:
    """Stopped sessions linger briefly; live ones go stale after a long silence."""
    if record.stopped:
        return now - record.stopped_at >= config.linger_seconds
    return now - record.last_update_at >= config.stale_seconds


def compute_labels(records: list[SessionRecord]) -> dict[str, str]:
    """Human-friendly labels for a set of coexisting sessions.

    A lone session is named after its working directory. With several, a
    directory shared by more than one session labels its earliest session
    ``main`` and later ones ``sub-1``, ``sub-2``; a directory unique among
    live sessions labels its session directly.
    """
    ordered = sorted(records, key=lambda r: (r.created_at, r.session_id))
    if not ordered:
        return {}
    if len(ordered) == 1:
        only = ordered[0]
        return {only.session_id: cwd_basename(only.cwd) or SOLO_FALLBACK_LABEL}

    counts: dict[str, int] = {}
    for record in ordered:
        base = cwd_basename(record.cwd)
        counts[base] = counts.get(base, 0) + 1

    labels: dict[str, str] = {}
    seen: dict[str, int] = {}
    for record in ordered:
        base = cwd_basename(record.cwd)
        if base and counts[base] == 1:
            labels[record.session_id] = base
            continue
        index = seen.get(base, 0)
        seen[base] = index + 1
        labels[record.session_id] = "main" if index == 0 else f"sub-{index}"
    return labels


class SessionRegistry:
    """Live session records plus the shared display slot."""

    def __init__(
        self,
        sessions: dict[str, SessionRecord] | None = None,
        slot: SharedSlot | None = None,
        config: RegistryConfig | None = None,
    ):
        self.sessions: dict[str, SessionRecord] = dict(sessions or {})
        self.slot = slot
        self.config = config or RegistryConfig()
        self._changed: set[str] = set()
        self.assign_labels()

    def get(self, session_id: str) -> SessionRecord | None:
        return self.sessions.get(session_id)

    def observe(
        self,
        session_id: str,
        state: ActivityState,
        detail: str,
        now: float,
        *,
        cwd: str | None = None,
        parent_session_id: str | None = None,
        stopped: bool = False,
    ) -> SessionRecord:
        """Create or update a session from a classified event."""
        record = self.sessions.get(session_id)
        created = record is None
        if record is None:
            record = SessionRecord(
                session_id=session_id,
                created_at=now,
                last_update_at=now,
                parent_session_id=parent_session_id,
            )
            self.sessions[session_id] = record

        record.state = state
        record.detail = detail
        record.last_update_at = now
        if cwd:
            record.cwd = cwd
        if parent_session_id and not record.parent_session_id:
            record.parent_session_id = parent_session_id
        if stopped and not record.stopped:
            record.stopped = True
            record.stopped_at = now
        self._changed.add(session_id)

        if created:
            logger.debug("Tracking new session %s", session_id)
            self.assign_labels()
        return record

    # -- slot ownership ---------------------------------------------------

    def can_claim(self, session_id: str, now: float) -> bool:
        """Whether ``session_id`` may write the shared slot right now."""
        slot = self.slot
        if slot is None or slot.session_id == session_id:
            return True
        if slot.stopped:
            return True
        return now - slot.timestamp >= self.config.slot_freshness_seconds

    def claim(self, session_id: str, now: float) -> bool:
        """Compare-and-set the shared slot to ``session_id``'s current view."""
        record = self.sessions.get(session_id)
        if record is None or not self.can_claim(session_id, now):
            return False
        if self.slot is not None and self.slot.session_id != session_id:
            logger.debug("Slot handed from %s to %s", self.slot.session_id, session_id)
        self.slot = SharedSlot.from_session(record, now)
        return True

    # -- lifecycle --------------------------------------------------------

    def evict(self, now: float) -> list[SessionRecord]:
        """Remove stale and expired-linger sessions. Returns what was removed."""
        evicted = [r for r in self.sessions.values() if is_expired(r, now, self.config)]
        for record in evicted:
            del self.sessions[record.session_id]
            self._changed.discard(record.session_id)
            logger.debug("Evicted session %s (stopped=%s)", record.session_id, record.stopped)
        if evicted:
            self.assign_labels()
        return evicted

    def assign_labels(self) -> None:
        labels = compute_labels(list(self.sessions.values()))
        for session_id, label in labels.items():
            self.sessions[session_id].label = label
        if self.slot is not None and self.slot.session_id in labels:
            self.slot.label = labels[self.slot.session_id]

    def active_children(self, parent_session_id: str) -> list[SessionRecord]:
        """Running sub-agent sessions of a parent, oldest first."""
        children = [
            r
            for r in self.sessions.values()
            if r.parent_session_id == parent_session_id and not r.stopped
        ]
        return sorted(children, key=lambda r: (r.created_at, r.session_id))

    def stop_children(self, parent_session_id: str, now: float) -> list[SessionRecord]:
        stopped = self.active_children(parent_session_id)
        for child in stopped:
            self.observe(child.session_id, ActivityState.HAPPY, "done", now, stopped=True)
        return stopped

    def changed(self) -> list[SessionRecord]:
        """Records observed since this registry was built, for write-back."""
        return [self.sessions[sid] for sid in sorted(self._changed) if sid in self.sessions]

    def ordered(self) -> list[SessionRecord]:
        return sorted(self.sessions.values(), key=lambda r: (r.created_at, r.session_id))

    def views(self) -> list[dict]:
        return [r.to_view() for r in self.ordered()]
