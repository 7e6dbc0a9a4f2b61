"""Display state machine — minimum-display-time buffering for one rendered face.

Any state may follow any other, but a new state arriving before the current
one has been visible for its minimum duration is held as pending and applied
by ``tick`` once the deadline passes.
"""

from __future__ import annotations

from collections import deque

from moodring.models import (
    ACTIVE_WORK_STATES,
    COMPLETION_STATES,
    FAILURE_STATES,
    LOW_ACTIVITY_STATES,
    ActivityState,
    TimelineEntry,
)

S = ActivityState

MIN_DISPLAY_SECONDS: dict[ActivityState, float] = {
    S.HAPPY: 4.0,
    S.PROUD: 4.5,
    S.SATISFIED: 2.5,
    S.RELIEVED: 2.5,
    S.ERROR: 4.0,
    S.CODING: 6.0,
    S.THINKING: 2.5,
    S.RESPONDING: 3.0,
    S.READING: 4.0,
    S.SEARCHING: 4.0,
    S.EXECUTING: 4.0,
    S.TESTING: 4.0,
    S.INSTALLING: 4.0,
    S.CAFFEINATED: 2.5,
    S.SUBAGENT: 4.0,
    S.WAITING: 1.5,
    S.SLEEPING: 1.0,
    S.COMMITTING: 3.5,
    S.REVIEWING: 3.5,
    S.RATELIMITED: 5.0,
}
DEFAULT_MIN_DISPLAY_SECONDS = 1.0

# How long a completion face stays up before decaying to idle
COMPLETION_LINGER_SECONDS: dict[ActivityState, float] = {
    S.HAPPY: 8.0,
    S.PROUD: 7.0,
    S.SATISFIED: 5.5,
    S.RELIEVED: 6.0,
}
IDLE_TIMEOUT_SECONDS = 8.0
SLEEP_TIMEOUT_SECONDS = 60.0
CAFFEINE_WINDOW_SECONDS = 10.0
CAFFEINE_THRESHOLD = 5

TIMELINE_CAPACITY = 200
MAX_CONSECUTIVE_LOW = 3


class DisplayStateMachine:
    """Buffered state for one face, plus its bounded transition timeline."""

    def __init__(
        self,
        now: float = 0.0,
        min_display: dict[ActivityState, float] | None = None,
        capacity: int = TIMELINE_CAPACITY,
    ):
        self.min_display = dict(MIN_DISPLAY_SECONDS if min_display is None else min_display)
        self.current_state = ActivityState.IDLE
        self.current_detail = ""
        self.previous_state = ActivityState.IDLE
        self.pending_state: ActivityState | None = None
        self.pending_detail = ""
        self.min_display_until = 0.0
        self.last_change_at = now
        self.timeline: deque[TimelineEntry] = deque(
            [TimelineEntry(ActivityState.IDLE, now)], maxlen=capacity
        )
        self._change_times: deque[float] = deque(maxlen=20)

    def min_display_for(self, state: ActivityState) -> float:
        return self.min_display.get(state, DEFAULT_MIN_DISPLAY_SECONDS)

    def set_state(self, state: ActivityState | str, detail: str, now: float) -> bool:
        """Request a transition. Returns True when it became visible now."""
        state = ActivityState.coerce(state)

        if state == self.current_state:
            self.current_detail = detail
            return True

        if now < self.min_display_until:
            # A pending error is never displaced by a calmer state
            if self.pending_state in FAILURE_STATES and state not in FAILURE_STATES:
                return False
            self.pending_state = state
            self.pending_detail = detail
            return False

        self._apply(state, detail, now)
        return True

    def tick(self, now: float) -> bool:
        """Apply a buffered transition whose wait is over. Returns True if applied."""
        if self.pending_state is None or now < self.min_display_until:
            return False
        state, detail = self.pending_state, self.pending_detail
        if state == self.current_state:
            self.current_detail = detail
            self._clear_pending()
            return False
        self._apply(state, detail, now)
        return True

    def decay(self, now: float) -> None:
        """Time-based fallbacks used by the polling consumer.

        Completion faces and stalled work fade to idle, idle falls asleep, and
        a burst of state changes reads as caffeinated.
        """
        if self.pending_state is not None or now < self.min_display_until:
            return
        state = self.current_state
        elapsed = now - self.last_change_at

        recent = [t for t in self._change_times if now - t < CAFFEINE_WINDOW_SECONDS]
        if len(recent) >= CAFFEINE_THRESHOLD and state in ACTIVE_WORK_STATES and state not in (
            S.COMMITTING,
            S.RESPONDING,
        ):
            self._apply(S.CAFFEINATED, self.current_detail or "hyperdrive!", now)
            return
        if state == S.CAFFEINATED and len(recent) < CAFFEINE_THRESHOLD - 1:
            self._apply(self.previous_state, "", now)
            return

        linger = COMPLETION_LINGER_SECONDS.get(state)
        if linger is not None:
            if elapsed > linger:
                self._apply(S.IDLE, "", now)
        elif state not in LOW_ACTIVITY_STATES and elapsed > IDLE_TIMEOUT_SECONDS:
            self._apply(S.IDLE, "", now)
        elif state == S.IDLE and elapsed > SLEEP_TIMEOUT_SECONDS:
            self._apply(S.SLEEPING, "", now)

    def is_showing_completion(self) -> bool:
        return self.current_state in COMPLETION_STATES

    def _clear_pending(self) -> None:
        self.pending_state = None
        self.pending_detail = ""

    def _apply(self, state: ActivityState, detail: str, now: float) -> None:
        self.previous_state = self.current_state
        self.current_state = state
        self.current_detail = detail
        self.last_change_at = now
        self.min_display_until = now + self.min_display_for(state)
        self._clear_pending()
        self._change_times.append(now)
        self._record(state, now)

    def _record(self, state: ActivityState, now: float) -> None:
        # At most MAX_CONSECUTIVE_LOW identical low-activity entries in a row
        if state in LOW_ACTIVITY_STATES:
            run = 0
            for entry in reversed(self.timeline):
                if entry.state != state:
                    break
                run += 1
            if run >= MAX_CONSECUTIVE_LOW:
                return
        self.timeline.append(TimelineEntry(state, now))
