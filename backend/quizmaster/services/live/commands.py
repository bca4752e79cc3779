"""Inbound commands accepted by a live session.

Commands form a closed set; ``LiveSession.apply`` dispatches on the concrete
type and refuses anything it does not know.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(str, Enum):
    HOST = 'host'
    PARTICIPANT = 'participant'


@dataclass(frozen=True)
class Actor:
    role: Role
    participant_id: Optional[str] = None

    @classmethod
    def host(cls) -> 'Actor':
        return cls(Role.HOST)

    @classmethod
    def participant(cls, participant_id: str) -> 'Actor':
        return cls(Role.PARTICIPANT, participant_id)


@dataclass(frozen=True)
class StartSession:
    pass


@dataclass(frozen=True)
class PauseSession:
    pass


@dataclass(frozen=True)
class ResumeSession:
    pass


@dataclass(frozen=True)
class ShowQuestion:
    # None advances to the next question; a larger index skips ahead
    question_index: Optional[int] = None


@dataclass(frozen=True)
class CloseQuestion:
    pass


@dataclass(frozen=True)
class RestartTimer:
    pass


@dataclass(frozen=True)
class EndSession:
    reason: str = 'host'


@dataclass(frozen=True)
class JoinSession:
    display_name: str
    participant_id: Optional[str] = None
    rejoin_token: Optional[str] = None


@dataclass(frozen=True)
class SubmitAnswer:
    question_index: int
    selected_answer_id: Optional[str]
    # Reported by the client, logged only; scoring uses server time
    client_submit_time: Optional[float] = None


HOST_COMMANDS = (StartSession, PauseSession, ResumeSession, ShowQuestion, CloseQuestion, RestartTimer, EndSession)

COMMAND_NAMES = {
    StartSession: 'start_session',
    PauseSession: 'pause_session',
    ResumeSession: 'resume_session',
    ShowQuestion: 'show_question',
    CloseQuestion: 'close_question',
    RestartTimer: 'restart_timer',
    EndSession: 'end_session',
    JoinSession: 'join_session',
    SubmitAnswer: 'submit_answer',
}


def command_name(command) -> str:
    return COMMAND_NAMES.get(type(command), type(command).__name__)
