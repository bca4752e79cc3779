"""Process-wide registry of live sessions.

Each session is an independent unit: the registry lock only guards the
id -> session map, never a session's own state.
"""

import logging
import secrets
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from .clock import Clock, MonotonicClock
from .errors import ErrorCode, EngineInvariantError, Outcome, SessionError
from .session import LiveSession, Publisher
from .types import QuizDocument, SessionOptions, SessionStatus

logger = logging.getLogger(__name__)


class QuizStore(Protocol):
    def get_quiz(self, quiz_id) -> Optional[QuizDocument]:
        ...


class ResultsStore(Protocol):
    def archive(self, results: Dict[str, Any]) -> None:
        ...


class SessionRegistry:
    def __init__(
        self,
        quiz_store: Optional[QuizStore] = None,
        results_store: Optional[ResultsStore] = None,
        clock: Optional[Clock] = None,
        config: Optional[Mapping[str, Any]] = None,
        publisher_factory: Optional[Callable[[str], Publisher]] = None,
    ) -> None:
        self.quiz_store = quiz_store
        self.results_store = results_store
        self.clock: Clock = clock or MonotonicClock()
        self.config: Mapping[str, Any] = config or {}
        self.publisher_factory = publisher_factory
        self._sessions: Dict[str, LiveSession] = {}
        self._lock = threading.Lock()
        self._created_listeners: List[Callable[[LiveSession], None]] = []
        self._ended_listeners: List[Callable[[LiveSession], None]] = []

    def on_session_created(self, listener: Callable[[LiveSession], None]) -> None:
        self._created_listeners.append(listener)

    def on_session_ended(self, listener: Callable[[LiveSession], None]) -> None:
        self._ended_listeners.append(listener)

    def create_session(
        self,
        quiz_id,
        host_user_id: Optional[int] = None,
        overrides: Optional[Mapping[str, Any]] = None,
        quiz: Optional[QuizDocument] = None,
    ) -> Outcome[LiveSession]:
        """Load the quiz once and open a session in the Waiting state."""
        if quiz is None:
            quiz = self.quiz_store.get_quiz(quiz_id) if self.quiz_store is not None else None
        if quiz is None:
            return Outcome.failure(SessionError(ErrorCode.QUIZ_NOT_FOUND, f'Quiz {quiz_id} not found'))

        session_id = secrets.token_urlsafe(12)
        session = LiveSession(
            session_id=session_id,
            quiz=quiz,
            clock=self.clock,
            options=SessionOptions.from_config(self.config, overrides),
            host_token=secrets.token_urlsafe(24),
            host_user_id=host_user_id,
        )
        if self.publisher_factory is not None:
            session.publisher = self.publisher_factory(session_id)
        session.add_end_hook(self._session_ended)
        with self._lock:
            self._sessions[session_id] = session
        logger.info(f"[session-created] session={session_id} quiz={quiz.id} questions={quiz.question_count}")
        for listener in list(self._created_listeners):
            listener(session)
        return Outcome.success(session)

    def get(self, session_id: Optional[str]) -> Optional[LiveSession]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def require(self, session_id: Optional[str]) -> Outcome[LiveSession]:
        session = self.get(session_id)
        if session is None:
            return Outcome.failure(SessionError(ErrorCode.SESSION_NOT_FOUND, 'Session not found'))
        return Outcome.success(session)

    def sessions(self) -> List[LiveSession]:
        with self._lock:
            return list(self._sessions.values())

    def live_sessions(self) -> List[LiveSession]:
        return [s for s in self.sessions() if s.status is not SessionStatus.ENDED]

    def tick_all(self) -> int:
        """Tick every live session once; a failing session never stops the others."""
        ticked = 0
        for session in self.live_sessions():
            try:
                session.tick()
            except EngineInvariantError:
                continue
            ticked += 1
        return ticked

    def cleanup(self, max_age_ms: Optional[int] = None) -> int:
        if max_age_ms is None:
            max_age_ms = int(self.config.get('ENDED_SESSION_TTL_SEC', 24 * 60 * 60)) * 1000
        now = self.clock.now()
        removed = 0
        with self._lock:
            for session_id, session in list(self._sessions.items()):
                if session.ended and session.ended_at is not None and now - session.ended_at >= max_age_ms:
                    del self._sessions[session_id]
                    removed += 1
        if removed:
            logger.info(f"[cleanup] removed={removed} ended sessions")
        return removed

    def _session_ended(self, session: LiveSession) -> None:
        if self.results_store is not None:
            try:
                self.results_store.archive(session.results())
            except Exception:
                logger.exception(f"[archive-failed] session={session.id}")
        for listener in list(self._ended_listeners):
            listener(session)
