import logging
import threading
from typing import Callable, Dict, Optional

from .errors import EngineInvariantError
from .session import LiveSession

logger = logging.getLogger(__name__)


class TickScheduler:
    """One periodic tick task per live session.

    - No-ops when disabled (TESTING), tests tick sessions by hand
    - Ensures a single task per session id
    - The task exits on its own once the session has ended; ``cancel`` stops it early
    - Never holds the session lock between ticks

    It also owns the single periodic cleanup task that drops expired ended
    sessions from the registry.
    """

    def __init__(
        self,
        spawn: Callable,
        sleep: Callable[[float], None],
        interval_ms: int = 100,
        heartbeat_sec: int = 0,
        enabled: bool = True,
    ) -> None:
        self._spawn = spawn
        self._sleep = sleep
        self.interval_ms = max(10, int(interval_ms))
        self.heartbeat_sec = int(heartbeat_sec or 0)
        self.enabled = enabled
        self._stops: Dict[str, threading.Event] = {}
        self._cleanup_stop: Optional[threading.Event] = None
        self._lock = threading.Lock()

    def is_scheduled(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._stops

    def schedule(self, session: LiveSession) -> bool:
        if not self.enabled:
            return False
        with self._lock:
            if session.id in self._stops:
                logger.info(f"[timer-skip] session={session.id} already scheduled")
                return False
            stop = threading.Event()
            self._stops[session.id] = stop
        logger.info(f"[timer-loop] session={session.id} interval={self.interval_ms}ms")
        self._spawn(self._worker, session, stop)
        return True

    def cancel(self, session: LiveSession) -> None:
        with self._lock:
            stop = self._stops.pop(session.id, None)
        if stop is not None:
            stop.set()

    def _worker(self, session: LiveSession, stop: threading.Event) -> None:
        interval = self.interval_ms / 1000.0
        heartbeat_every = int(self.heartbeat_sec * 1000 / self.interval_ms) if self.heartbeat_sec > 0 else 0
        count = 0
        try:
            while not stop.is_set() and not session.ended:
                self._sleep(interval)
                if stop.is_set():
                    break
                try:
                    session.tick()
                except EngineInvariantError:
                    # The session already aborted itself; other sessions keep going
                    break
                count += 1
                if heartbeat_every and count % heartbeat_every == 0:
                    snapshot = session.snapshot()
                    logger.info(
                        f"[timer-heartbeat] session={session.id} status={snapshot.status.value} "
                        f"question={snapshot.current_question_index} remaining={snapshot.remaining_ms}ms"
                    )
        finally:
            with self._lock:
                if self._stops.get(session.id) is stop:
                    del self._stops[session.id]
            logger.info(f"[timer-stop] session={session.id} ticks={count}")

    def start_cleanup(self, cleanup: Callable[[], int], every_sec: float) -> bool:
        """Run ``cleanup`` every ``every_sec`` seconds; at most one loop per scheduler."""
        if not self.enabled or not every_sec or every_sec <= 0:
            return False
        with self._lock:
            if self._cleanup_stop is not None:
                return False
            stop = threading.Event()
            self._cleanup_stop = stop
        logger.info(f"[cleanup-loop] every={every_sec}s")
        self._spawn(self._cleanup_worker, cleanup, float(every_sec), stop)
        return True

    def stop_cleanup(self) -> None:
        with self._lock:
            stop, self._cleanup_stop = self._cleanup_stop, None
        if stop is not None:
            stop.set()

    def _cleanup_worker(self, cleanup: Callable[[], int], every_sec: float, stop: threading.Event) -> None:
        runs = 0
        try:
            while not stop.is_set():
                self._sleep(every_sec)
                if stop.is_set():
                    break
                try:
                    cleanup()
                except Exception:
                    logger.exception("[cleanup-failed]")
                runs += 1
        finally:
            with self._lock:
                if self._cleanup_stop is stop:
                    self._cleanup_stop = None
            logger.info(f"[cleanup-stop] runs={runs}")
