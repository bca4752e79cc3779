"""Derived-time countdowns for one session.

The controller holds at most one ``TimerState``. Every operation replaces
that value; remaining time is recomputed from the clock on demand, so
tick cadence never affects correctness.
"""

from dataclasses import dataclass, replace
import logging
from typing import List, Optional

from .clock import Clock
from .events import TimerExpired, TimerTick
from .types import TimerPhase, TimerState

logger = logging.getLogger(__name__)


def _ceil_seconds(ms: int) -> int:
    return -(-ms // 1000)


@dataclass(frozen=True)
class TimerChange:
    state: Optional[TimerState]
    changed: bool


class TimerController:
    def __init__(self, clock: Clock, final_seconds_threshold_ms: int = 10_000, label: str = '') -> None:
        self._clock = clock
        self._threshold_ms = final_seconds_threshold_ms
        self._label = label
        self._state: Optional[TimerState] = None
        self._last_reported_seconds: Optional[int] = None

    @property
    def state(self) -> Optional[TimerState]:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is not None and self._state.phase is not TimerPhase.EXPIRED

    def remaining_ms(self) -> Optional[int]:
        if self._state is None:
            return None
        return self._state.remaining_ms(self._clock.now())

    def elapsed_ms(self) -> Optional[int]:
        if self._state is None:
            return None
        return min(self._state.duration_ms, self._state.elapsed_ms(self._clock.now()))

    def start_countdown(self, question_index: int, duration_ms: int) -> TimerState:
        return self._start(question_index, duration_ms, is_countdown=True)

    def start_question(self, question_index: int, duration_ms: int) -> TimerState:
        return self._start(question_index, duration_ms, is_countdown=False)

    def _start(self, question_index: int, duration_ms: int, is_countdown: bool) -> TimerState:
        self._state = TimerState(
            question_index=question_index,
            phase=TimerPhase.COUNTDOWN if is_countdown else TimerPhase.RUNNING,
            started_at=self._clock.now(),
            duration_ms=int(duration_ms),
            is_countdown=is_countdown,
        )
        self._last_reported_seconds = None
        logger.info(
            f"[timer-set] session={self._label} question={question_index} countdown={is_countdown} duration={duration_ms}ms"
        )
        return self._state

    def pause(self) -> TimerChange:
        state = self._state
        if state is None or state.phase in (TimerPhase.PAUSED, TimerPhase.EXPIRED):
            return TimerChange(state, False)
        self._state = replace(state, phase=TimerPhase.PAUSED, paused_at=self._clock.now())
        return TimerChange(self._state, True)

    def resume(self) -> TimerChange:
        state = self._state
        if state is None or state.phase is not TimerPhase.PAUSED or state.paused_at is None:
            return TimerChange(state, False)
        paused_for = self._clock.now() - state.paused_at
        self._state = replace(
            state,
            phase=TimerPhase.COUNTDOWN if state.is_countdown else TimerPhase.RUNNING,
            accumulated_paused_ms=state.accumulated_paused_ms + paused_for,
            paused_at=None,
        )
        return TimerChange(self._state, True)

    def restart(self) -> TimerChange:
        """Replace the timer with a fresh one of the same question and duration.

        A paused timer restarts paused, at full duration.
        """
        state = self._state
        if state is None:
            return TimerChange(None, False)
        fresh = self._start(state.question_index, state.duration_ms, state.is_countdown)
        if state.phase is TimerPhase.PAUSED:
            self._state = replace(fresh, phase=TimerPhase.PAUSED, paused_at=fresh.started_at)
        return TimerChange(self._state, True)

    def cancel(self) -> None:
        self._state = None
        self._last_reported_seconds = None

    def poll(self) -> List[object]:
        """Recompute remaining time and return due TimerTick / TimerExpired events.

        A tick is produced only when the displayed whole-second value changes.
        Expiry is reported exactly once per TimerState.
        """
        state = self._state
        if state is None or state.phase in (TimerPhase.PAUSED, TimerPhase.EXPIRED):
            return []
        remaining = state.remaining_ms(self._clock.now())
        events: List[object] = []
        seconds = _ceil_seconds(remaining)
        if seconds != self._last_reported_seconds:
            self._last_reported_seconds = seconds
            events.append(TimerTick(
                question_index=state.question_index,
                remaining_ms=remaining,
                remaining_seconds=seconds,
                duration_ms=state.duration_ms,
                is_countdown=state.is_countdown,
                is_final_ten_seconds=remaining <= self._threshold_ms,
            ))
        if remaining <= 0:
            self._state = replace(state, phase=TimerPhase.EXPIRED)
            logger.info(f"[timer-fire] session={self._label} question={state.question_index} countdown={state.is_countdown}")
            events.append(TimerExpired(question_index=state.question_index, is_countdown=state.is_countdown))
        return events
