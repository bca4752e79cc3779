"""Outbound events produced by a live session.

Each event knows its wire name, who should receive it and whether it may be
dropped under backpressure. Sequence numbers are attached by the owning
session through ``Envelope`` so that clients can discard repeats.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from .errors import SessionError
from .types import AnswerRecord, LeaderboardEntry, Participant, QuestionDoc, SessionSnapshot, SessionStatus


class Audience(str, Enum):
    SESSION = 'session'
    HOSTS = 'hosts'
    PARTICIPANT = 'participant'


@dataclass(frozen=True)
class SessionStateChanged:
    name: ClassVar[str] = 'session_state_changed'
    droppable: ClassVar[bool] = False

    snapshot: SessionSnapshot
    previous_status: Optional[SessionStatus]
    trigger: str
    question: Optional[QuestionDoc] = None
    reason: Optional[str] = None

    audience = Audience.SESSION
    target = None

    @property
    def status(self) -> SessionStatus:
        return self.snapshot.status

    def to_payload(self, for_host: bool = False) -> Dict[str, Any]:
        payload = {
            'session': self.snapshot.to_dict(),
            'status': self.snapshot.status.value,
            'previous_status': self.previous_status.value if self.previous_status else None,
            'trigger': self.trigger,
            'question_index': self.snapshot.current_question_index,
        }
        if self.reason:
            payload['reason'] = self.reason
        if self.question is not None:
            # Correct answers stay hidden from participants until the question closes
            reveal = for_host or self.snapshot.status in (SessionStatus.QUESTION_CLOSED, SessionStatus.ENDED)
            payload['question'] = self.question.to_dict(reveal=reveal)
            if reveal:
                payload['correct_answer_id'] = self.question.correct_answer_id
        return payload


@dataclass(frozen=True)
class TimerTick:
    name: ClassVar[str] = 'timer_tick'
    droppable: ClassVar[bool] = True

    question_index: int
    remaining_ms: int
    remaining_seconds: int
    duration_ms: int
    is_countdown: bool
    is_final_ten_seconds: bool

    audience = Audience.SESSION
    target = None

    def to_payload(self, for_host: bool = False) -> Dict[str, Any]:
        return {
            'question_index': self.question_index,
            'remaining_ms': self.remaining_ms,
            'remaining_seconds': self.remaining_seconds,
            'duration_ms': self.duration_ms,
            'is_countdown': self.is_countdown,
            'is_final_ten_seconds': self.is_final_ten_seconds,
        }


@dataclass(frozen=True)
class TimerExpired:
    name: ClassVar[str] = 'timer_expired'
    droppable: ClassVar[bool] = False

    question_index: int
    is_countdown: bool

    audience = Audience.SESSION
    target = None

    def to_payload(self, for_host: bool = False) -> Dict[str, Any]:
        return {'question_index': self.question_index, 'is_countdown': self.is_countdown}


@dataclass(frozen=True)
class AnswerAccepted:
    name: ClassVar[str] = 'answer_accepted'
    droppable: ClassVar[bool] = False

    record: AnswerRecord
    display_name: str
    total_score: int

    audience = Audience.PARTICIPANT

    @property
    def target(self) -> str:
        return self.record.participant_id

    def to_payload(self, for_host: bool = False) -> Dict[str, Any]:
        payload = self.record.to_dict()
        payload['display_name'] = self.display_name
        payload['total_score'] = self.total_score
        return payload


@dataclass(frozen=True)
class AnswerRejected:
    name: ClassVar[str] = 'answer_rejected'
    droppable: ClassVar[bool] = False

    participant_id: str
    question_index: int
    error: SessionError

    audience = Audience.PARTICIPANT

    @property
    def target(self) -> str:
        return self.participant_id

    def to_payload(self, for_host: bool = False) -> Dict[str, Any]:
        payload = self.error.to_dict()
        payload['question_index'] = self.question_index
        return payload


@dataclass(frozen=True)
class LeaderboardUpdated:
    name: ClassVar[str] = 'leaderboard_updated'
    droppable: ClassVar[bool] = False

    entries: Tuple[LeaderboardEntry, ...]
    question_index: int
    show_to_participants: bool = True
    limit: Optional[int] = None

    target = None

    @property
    def audience(self) -> Audience:
        return Audience.SESSION if self.show_to_participants else Audience.HOSTS

    def to_payload(self, for_host: bool = False) -> Dict[str, Any]:
        entries = self.entries if for_host or self.limit is None else self.entries[:self.limit]
        return {
            'question_index': self.question_index,
            'leaderboard': [e.to_dict() for e in entries],
        }


@dataclass(frozen=True)
class ParticipantJoined:
    name: ClassVar[str] = 'participant_joined'
    droppable: ClassVar[bool] = False

    participant: Participant
    participant_count: int
    rejoined: bool = False

    audience = Audience.SESSION
    target = None

    def to_payload(self, for_host: bool = False) -> Dict[str, Any]:
        return {
            'participant': self.participant.to_dict(),
            'participant_count': self.participant_count,
            'rejoined': self.rejoined,
        }


@dataclass(frozen=True)
class ParticipantDisconnected:
    name: ClassVar[str] = 'participant_disconnected'
    droppable: ClassVar[bool] = False

    participant_id: str
    display_name: str
    connected_count: int

    audience = Audience.SESSION
    target = None

    def to_payload(self, for_host: bool = False) -> Dict[str, Any]:
        return {
            'participant_id': self.participant_id,
            'display_name': self.display_name,
            'connected_count': self.connected_count,
        }


Event = Union[
    SessionStateChanged,
    TimerTick,
    TimerExpired,
    AnswerAccepted,
    AnswerRejected,
    LeaderboardUpdated,
    ParticipantJoined,
    ParticipantDisconnected,
]


@dataclass(frozen=True)
class Envelope:
    session_id: str
    seq: int
    event: Event

    @property
    def name(self) -> str:
        return self.event.name

    @property
    def droppable(self) -> bool:
        return self.event.droppable

    @property
    def replayable(self) -> bool:
        """Kept in the session stream for ``sync_session`` replays."""
        return not self.event.droppable and self.event.audience is Audience.SESSION

    def to_wire(self, for_host: bool = False) -> Dict[str, Any]:
        payload = self.event.to_payload(for_host=for_host)
        payload['session_id'] = self.session_id
        payload['seq'] = self.seq
        return payload
