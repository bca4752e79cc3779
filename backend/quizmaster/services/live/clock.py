"""Monotonic millisecond clocks used for every piece of timer math."""

import threading
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int:
        """Return a monotonic instant in whole milliseconds."""


class MonotonicClock:
    """Process clock backed by ``time.monotonic_ns`` (immune to NTP steps)."""

    def now(self) -> int:
        return time.monotonic_ns() // 1_000_000


class ManualClock:
    """Virtual clock for tests and replays; only moves when told to."""

    def __init__(self, start_ms: int = 0) -> None:
        self._now = int(start_ms)
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def advance(self, ms: int) -> int:
        if ms < 0:
            raise ValueError('ManualClock cannot go backwards')
        with self._lock:
            self._now += int(ms)
            return self._now
