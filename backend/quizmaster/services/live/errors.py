"""Domain outcomes returned (not raised) by the live session engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, Tuple, TypeVar


class ErrorCode(str, Enum):
    ILLEGAL_TRANSITION = 'IllegalTransition'
    SESSION_ENDED = 'SessionEnded'
    QUESTION_NOT_ACTIVE = 'QuestionNotActive'
    DUPLICATE_ANSWER = 'DuplicateAnswer'
    INVALID_ANSWER = 'InvalidAnswer'
    QUIZ_NOT_FOUND = 'QuizNotFound'
    SESSION_NOT_FOUND = 'SessionNotFound'
    PARTICIPANT_NOT_FOUND = 'ParticipantNotFound'
    UNAUTHORIZED = 'Unauthorized'
    SESSION_FULL = 'SessionFull'
    LATE_JOIN_CLOSED = 'LateJoinClosed'


@dataclass(frozen=True)
class SessionError:
    code: ErrorCode
    message: str

    @property
    def silent(self) -> bool:
        # The first answer already stands; participants get no feedback for retries
        return self.code is ErrorCode.DUPLICATE_ANSWER

    def to_dict(self) -> Dict[str, Any]:
        return {'code': self.code.value, 'message': self.message}


def illegal(command: str, status: Any) -> SessionError:
    state = getattr(status, 'value', status)
    return SessionError(ErrorCode.ILLEGAL_TRANSITION, f'{command} is not allowed while session is {state}')


T = TypeVar('T')


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or a SessionError, plus the events the change produced."""

    value: Optional[T] = None
    error: Optional[SessionError] = None
    events: Tuple[Any, ...] = field(default_factory=tuple)
    changed: bool = True
    # Command-specific result (the joined Participant, the new AnswerRecord)
    detail: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, events=(), changed: bool = True, detail: Any = None) -> 'Outcome[T]':
        return cls(value=value, events=tuple(events), changed=changed, detail=detail)

    @classmethod
    def failure(cls, error: SessionError, value: Optional[T] = None, events=()) -> 'Outcome[T]':
        return cls(value=value, error=error, events=tuple(events), changed=False)

    def with_value(self, value: T, events=None) -> 'Outcome[T]':
        return Outcome(
            value=value,
            error=self.error,
            events=self.events if events is None else tuple(events),
            changed=self.changed,
            detail=self.detail,
        )


class EngineInvariantError(RuntimeError):
    """Internal inconsistency; fatal to the owning session only."""
