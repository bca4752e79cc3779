"""Value types shared by the live session engine.

Everything here is immutable. State changes replace values instead of
mutating them, so a snapshot handed to a reader can never change underneath it.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class SessionStatus(str, Enum):
    WAITING = 'waiting'
    COUNTDOWN = 'countdown'
    QUESTION_ACTIVE = 'question_active'
    QUESTION_CLOSED = 'question_closed'
    PAUSED = 'paused'
    ENDED = 'ended'


class TimerPhase(str, Enum):
    COUNTDOWN = 'countdown'
    RUNNING = 'running'
    PAUSED = 'paused'
    EXPIRED = 'expired'


class ConnectionState(str, Enum):
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'


# ---- Quiz documents (read-only copies of the Quiz Store) ----

@dataclass(frozen=True)
class AnswerOption:
    id: str
    text: str
    is_correct: bool = False

    def to_dict(self, reveal: bool = False) -> Dict[str, Any]:
        data = {'id': self.id, 'text': self.text}
        if reveal:
            data['is_correct'] = self.is_correct
        return data


@dataclass(frozen=True)
class QuestionDoc:
    id: str
    text: str
    answers: Tuple[AnswerOption, ...]
    points: int
    time_limit_seconds: int

    @property
    def duration_ms(self) -> int:
        return int(self.time_limit_seconds) * 1000

    @property
    def correct_answer_id(self) -> Optional[str]:
        for option in self.answers:
            if option.is_correct:
                return option.id
        return None

    def find_answer(self, answer_id: str) -> Optional[AnswerOption]:
        for option in self.answers:
            if option.id == answer_id:
                return option
        return None

    def to_dict(self, reveal: bool = False) -> Dict[str, Any]:
        return {
            'id': self.id,
            'text': self.text,
            'points': self.points,
            'time_limit_seconds': self.time_limit_seconds,
            'answers': [a.to_dict(reveal=reveal) for a in self.answers],
        }


@dataclass(frozen=True)
class QuizDocument:
    id: str
    title: str
    questions: Tuple[QuestionDoc, ...]

    @property
    def question_count(self) -> int:
        return len(self.questions)


# ---- Session-owned values ----

_TRUTHY = ('1', 'true', 'yes', 'on')


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


@dataclass(frozen=True)
class SessionOptions:
    max_participants: int = 50
    allow_late_join: bool = True
    show_leaderboard: bool = True
    leaderboard_limit: int = 10
    countdown_ms: int = 5000
    final_seconds_threshold_ms: int = 10_000

    @classmethod
    def from_config(cls, config: Mapping[str, Any], overrides: Optional[Mapping[str, Any]] = None) -> 'SessionOptions':
        overrides = overrides or {}
        countdown_sec = overrides.get('countdown_seconds', config.get('COUNTDOWN_DURATION_SEC', 5))
        return cls(
            max_participants=int(overrides.get('max_participants', config.get('MAX_PARTICIPANTS', 50))),
            allow_late_join=_flag(overrides.get('allow_late_join', config.get('ALLOW_LATE_JOIN', True))),
            show_leaderboard=_flag(overrides.get('show_leaderboard', config.get('SHOW_LEADERBOARD', True))),
            leaderboard_limit=int(config.get('LEADERBOARD_LIMIT', 10)),
            countdown_ms=int(float(countdown_sec) * 1000),
            final_seconds_threshold_ms=int(config.get('FINAL_SECONDS_THRESHOLD', 10)) * 1000,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'max_participants': self.max_participants,
            'allow_late_join': self.allow_late_join,
            'show_leaderboard': self.show_leaderboard,
            'countdown_seconds': self.countdown_ms / 1000,
        }


@dataclass(frozen=True)
class Participant:
    id: str
    session_id: str
    display_name: str
    joined_at: int
    join_order: int
    connection_state: ConnectionState = ConnectionState.CONNECTED

    @property
    def connected(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTED

    def with_connection(self, state: ConnectionState) -> 'Participant':
        return replace(self, connection_state=state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'display_name': self.display_name,
            'connection_state': self.connection_state.value,
            'join_order': self.join_order,
        }


@dataclass(frozen=True)
class AnswerRecord:
    session_id: str
    participant_id: str
    question_index: int
    selected_answer_id: Optional[str]
    submitted_at_offset_ms: int
    is_correct: bool
    points_awarded: int

    @property
    def timed_out(self) -> bool:
        return self.selected_answer_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'participant_id': self.participant_id,
            'question_index': self.question_index,
            'selected_answer_id': self.selected_answer_id,
            'submitted_at_offset_ms': self.submitted_at_offset_ms,
            'is_correct': self.is_correct,
            'points_awarded': self.points_awarded,
        }


@dataclass(frozen=True)
class LeaderboardEntry:
    participant_id: str
    display_name: str
    total_score: int
    correct_count: int
    answered_count: int
    rank: int
    connected: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'participant_id': self.participant_id,
            'display_name': self.display_name,
            'total_score': self.total_score,
            'correct_count': self.correct_count,
            'answered_count': self.answered_count,
            'rank': self.rank,
            'connected': self.connected,
        }


@dataclass(frozen=True)
class TimerState:
    """One question's (or one countdown's) timer.

    Remaining time is always derived from the clock, never decremented.
    ``paused_at`` is set only while ``phase`` is PAUSED.
    """

    question_index: int
    phase: TimerPhase
    started_at: int
    duration_ms: int
    accumulated_paused_ms: int = 0
    paused_at: Optional[int] = None
    is_countdown: bool = False

    def elapsed_ms(self, now: int) -> int:
        end = self.paused_at if self.paused_at is not None else now
        return max(0, end - self.started_at - self.accumulated_paused_ms)

    def remaining_ms(self, now: int) -> int:
        if self.phase is TimerPhase.EXPIRED:
            return 0
        return max(0, self.duration_ms - self.elapsed_ms(now))


@dataclass(frozen=True)
class SessionSnapshot:
    session_id: str
    quiz_id: str
    quiz_title: str
    status: SessionStatus
    current_question_index: int
    question_count: int
    created_at: int
    participant_count: int
    connected_count: int
    paused_from: Optional[SessionStatus] = None
    timer: Optional[TimerState] = None
    remaining_ms: Optional[int] = None
    last_seq: int = 0
    options: SessionOptions = field(default_factory=SessionOptions)

    def to_dict(self) -> Dict[str, Any]:
        timer = None
        if self.timer is not None:
            timer = {
                'question_index': self.timer.question_index,
                'phase': self.timer.phase.value,
                'is_countdown': self.timer.is_countdown,
                'duration_ms': self.timer.duration_ms,
                'remaining_ms': self.remaining_ms,
            }
        return {
            'session_id': self.session_id,
            'quiz_id': self.quiz_id,
            'quiz_title': self.quiz_title,
            'status': self.status.value,
            'current_question_index': self.current_question_index,
            'question_count': self.question_count,
            'participant_count': self.participant_count,
            'connected_count': self.connected_count,
            'paused_from': self.paused_from.value if self.paused_from else None,
            'timer': timer,
            'seq': self.last_seq,
            'options': self.options.to_dict(),
        }
