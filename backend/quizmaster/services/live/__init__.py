"""Live session engine: state machine, timers, answer ledger and leaderboard.

Nothing in this package imports Flask or Socket.IO. Transport concerns live in
``quizmaster.socketio_events`` and ``quizmaster.services.live.broadcaster``; the
HTTP surface lives in ``quizmaster.api.sessions``.
"""

from .clock import Clock, ManualClock, MonotonicClock
from .commands import (
    Actor,
    CloseQuestion,
    EndSession,
    JoinSession,
    PauseSession,
    RestartTimer,
    ResumeSession,
    ShowQuestion,
    StartSession,
    SubmitAnswer,
)
from .errors import ErrorCode, SessionError
from .registry import SessionRegistry
from .session import LiveSession
from .types import SessionOptions, SessionStatus, TimerPhase

__all__ = [
    'Actor',
    'Clock',
    'CloseQuestion',
    'EndSession',
    'ErrorCode',
    'JoinSession',
    'LiveSession',
    'ManualClock',
    'MonotonicClock',
    'PauseSession',
    'RestartTimer',
    'ResumeSession',
    'SessionError',
    'SessionOptions',
    'SessionRegistry',
    'SessionStatus',
    'ShowQuestion',
    'StartSession',
    'SubmitAnswer',
    'TimerPhase',
]
