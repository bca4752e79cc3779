"""One live quiz session: lifecycle, roster, timer, ledger and event stream.

All mutation goes through ``apply`` (plus ``tick`` and ``mark_disconnected``),
which hold the session lock for exactly one state change. Events are sealed
with sequence numbers and queued on the session outbox under the lock. A single
drainer hands the outbox to the publisher after the lock is released, so
delivery follows seq order and network I/O never runs while the session is
locked.
"""

from collections import deque
import hmac
import logging
import secrets
import threading
import uuid
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from .clock import Clock
from .commands import (
    Actor,
    CloseQuestion,
    EndSession,
    HOST_COMMANDS,
    JoinSession,
    PauseSession,
    RestartTimer,
    ResumeSession,
    Role,
    ShowQuestion,
    StartSession,
    SubmitAnswer,
    command_name,
)
from .errors import EngineInvariantError, ErrorCode, Outcome, SessionError, illegal
from .events import (
    AnswerAccepted,
    AnswerRejected,
    Envelope,
    LeaderboardUpdated,
    ParticipantDisconnected,
    ParticipantJoined,
    SessionStateChanged,
    TimerExpired,
)
from .leaderboard import compute_leaderboard, question_statistics
from .ledger import AnswerLedger
from .timer import TimerController
from .types import (
    ConnectionState,
    LeaderboardEntry,
    Participant,
    QuestionDoc,
    QuizDocument,
    SessionOptions,
    SessionSnapshot,
    SessionStatus,
)

logger = logging.getLogger(__name__)

Publisher = Callable[[Sequence[Envelope]], None]

STREAM_RETENTION = 1000

PAUSABLE = (SessionStatus.COUNTDOWN, SessionStatus.QUESTION_ACTIVE, SessionStatus.QUESTION_CLOSED)


def _no_publisher(envelopes: Sequence[Envelope]) -> None:
    return None


class LiveSession:
    def __init__(
        self,
        session_id: str,
        quiz: QuizDocument,
        clock: Clock,
        options: Optional[SessionOptions] = None,
        host_token: Optional[str] = None,
        host_user_id: Optional[int] = None,
        publisher: Optional[Publisher] = None,
    ) -> None:
        self.id = session_id
        self.quiz = quiz
        self.options = options or SessionOptions()
        self.host_token = host_token
        self.host_user_id = host_user_id
        self.publisher: Publisher = publisher or _no_publisher
        self.created_at = clock.now()
        self.started_at: Optional[int] = None
        self.ended_at: Optional[int] = None
        self.end_reason: Optional[str] = None

        self._clock = clock
        self._lock = threading.RLock()
        self._status = SessionStatus.WAITING
        self._paused_from: Optional[SessionStatus] = None
        self._question_index = -1
        self._participants: Dict[str, Participant] = {}
        self._rejoin_tokens: Dict[str, str] = {}
        self._join_counter = 0
        self._timer = TimerController(clock, self.options.final_seconds_threshold_ms, label=session_id)
        self._ledger = AnswerLedger(session_id)
        self._leaderboard: Tuple[LeaderboardEntry, ...] = ()
        self._seq = 0
        self._stream: Deque[Envelope] = deque(maxlen=STREAM_RETENTION)
        self._outbox: Deque[Envelope] = deque()
        self._flushing = False
        self._end_hooks: List[Callable[['LiveSession'], None]] = []

    # ---- read-only views ----

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def ended(self) -> bool:
        return self._status is SessionStatus.ENDED

    @property
    def current_question_index(self) -> int:
        return self._question_index

    @property
    def timer_state(self):
        return self._timer.state

    def current_question(self) -> Optional[QuestionDoc]:
        if 0 <= self._question_index < self.quiz.question_count:
            return self.quiz.questions[self._question_index]
        return None

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return self._snapshot()

    def participants(self) -> Tuple[Participant, ...]:
        with self._lock:
            return tuple(self._participants.values())

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        with self._lock:
            return self._participants.get(participant_id)

    def leaderboard(self, limit: Optional[int] = None) -> Tuple[LeaderboardEntry, ...]:
        with self._lock:
            entries = self._leaderboard
        return entries if limit is None else entries[:limit]

    def answer_records(self):
        return self._ledger.records()

    def events_since(self, seq: int) -> List[Envelope]:
        with self._lock:
            return [e for e in self._stream if e.seq > seq]

    def rejoin_token(self, participant_id: str) -> Optional[str]:
        with self._lock:
            return self._rejoin_tokens.get(participant_id)

    def verify_host(self, token: Optional[str]) -> bool:
        if not self.host_token or not token:
            return False
        return hmac.compare_digest(str(self.host_token), str(token))

    def add_end_hook(self, hook: Callable[['LiveSession'], None]) -> None:
        self._end_hooks.append(hook)

    # ---- mutation entry points ----

    def apply(self, command, actor: Actor) -> Outcome[SessionSnapshot]:
        """Validate and apply one command; returns the resulting snapshot or an error.

        Exactly one state change happens per successful host command. No-op
        commands (a second resume, a restart with no timer) succeed with
        ``changed=False`` and produce no events.
        """
        name = command_name(command)
        with self._lock:
            was_ended = self.ended
            try:
                pending = self._drain_timer()
                outcome = self._dispatch(command, actor)
            except Exception:
                logger.exception(f"[command-crash] session={self.id} command={name}")
                crashed = self._abort_locked('internal_error')
            else:
                crashed = None
                self._seal(pending)
                envelopes = self._seal(outcome.events)
                outcome = outcome.with_value(self._snapshot(), events=envelopes)
            just_ended = self.ended and not was_ended

        if crashed is not None:
            self._flush()
            if just_ended:
                self._run_end_hooks()
            raise EngineInvariantError(f'Session {self.id} failed while applying {name}')

        if outcome.ok:
            if outcome.changed:
                logger.info(f"[command] session={self.id} command={name} actor={actor.role.value} status={outcome.value.status.value}")
        else:
            logger.info(f"[command-rejected] session={self.id} command={name} actor={actor.role.value} code={outcome.error.code.value}")
        self._flush()
        if just_ended:
            self._run_end_hooks()
        return outcome

    def tick(self) -> List[Envelope]:
        """Advance the timer; called periodically by the scheduler."""
        crashed = False
        with self._lock:
            if self.ended:
                return []
            try:
                envelopes = self._seal(self._drain_timer())
            except Exception:
                logger.exception(f"[tick-crash] session={self.id}")
                envelopes = self._abort_locked('internal_error')
                crashed = True
            just_ended = self.ended
        self._flush()
        if just_ended:
            self._run_end_hooks()
        if crashed:
            raise EngineInvariantError(f'Session {self.id} failed during tick')
        return envelopes

    def mark_disconnected(self, participant_id: str) -> Outcome[SessionSnapshot]:
        with self._lock:
            participant = self._participants.get(participant_id)
            if participant is None:
                return Outcome.failure(SessionError(ErrorCode.PARTICIPANT_NOT_FOUND, 'Participant not found'), self._snapshot())
            if not participant.connected:
                return Outcome.success(self._snapshot(), changed=False, detail=participant)
            participant = participant.with_connection(ConnectionState.DISCONNECTED)
            self._participants[participant_id] = participant
            self._refresh_leaderboard()
            envelopes = self._seal([ParticipantDisconnected(
                participant_id=participant.id,
                display_name=participant.display_name,
                connected_count=self._connected_count(),
            )])
            snapshot = self._snapshot()
        logger.info(f"[participant-disconnected] session={self.id} participant={participant_id}")
        self._flush()
        return Outcome.success(snapshot, events=envelopes, detail=participant)

    def abort(self, reason: str = 'internal_error') -> None:
        """Fatal path: end this session without touching any other."""
        with self._lock:
            if self.ended:
                return
            envelopes = self._abort_locked(reason)
        self._flush()
        self._run_end_hooks()

    # ---- dispatch ----

    def _dispatch(self, command, actor: Actor) -> Outcome:
        if isinstance(command, HOST_COMMANDS):
            if actor.role is not Role.HOST:
                return Outcome.failure(SessionError(ErrorCode.UNAUTHORIZED, 'Only the session host may do that'))
            if self.ended:
                return Outcome.failure(SessionError(ErrorCode.SESSION_ENDED, 'Session has ended'))
            if isinstance(command, StartSession):
                return self._start()
            if isinstance(command, PauseSession):
                return self._pause()
            if isinstance(command, ResumeSession):
                return self._resume()
            if isinstance(command, ShowQuestion):
                return self._show(command)
            if isinstance(command, CloseQuestion):
                return self._close_by_host()
            if isinstance(command, RestartTimer):
                return self._restart()
            if isinstance(command, EndSession):
                return self._end(command.reason, trigger='end_session')
        if isinstance(command, JoinSession):
            return self._join(command)
        if isinstance(command, SubmitAnswer):
            return self._submit(command, actor)
        raise EngineInvariantError(f'Unknown command {command!r}')

    def _start(self) -> Outcome:
        if self._status is not SessionStatus.WAITING:
            return Outcome.failure(illegal('start_session', self._status))
        if self.quiz.question_count < 1:
            return Outcome.failure(SessionError(ErrorCode.ILLEGAL_TRANSITION, 'Quiz has no questions'))
        self.started_at = self._clock.now()
        return Outcome.success(None, self._begin_countdown(0, 'start_session'))

    def _pause(self) -> Outcome:
        if self._status is SessionStatus.PAUSED:
            return Outcome.success(None, changed=False)
        if self._status not in PAUSABLE:
            return Outcome.failure(illegal('pause_session', self._status))
        previous = self._status
        self._paused_from = previous
        self._status = SessionStatus.PAUSED
        self._timer.pause()
        return Outcome.success(None, [self._state_event(previous, 'pause_session')])

    def _resume(self) -> Outcome:
        if self._status in PAUSABLE:
            return Outcome.success(None, changed=False)
        if self._status is not SessionStatus.PAUSED or self._paused_from is None:
            return Outcome.failure(illegal('resume_session', self._status))
        self._status = self._paused_from
        self._paused_from = None
        self._timer.resume()
        question = self.current_question() if self._status is SessionStatus.QUESTION_ACTIVE else None
        return Outcome.success(None, [self._state_event(SessionStatus.PAUSED, 'resume_session', question)])

    def _show(self, command: ShowQuestion) -> Outcome:
        if self._status is not SessionStatus.QUESTION_CLOSED:
            return Outcome.failure(illegal('show_question', self._status))
        last_index = self.quiz.question_count - 1
        target = command.question_index
        if target is None:
            if self._question_index >= last_index:
                return self._end('completed', trigger='show_question')
            target = self._question_index + 1
        if not isinstance(target, int) or target <= self._question_index or target > last_index:
            return Outcome.failure(SessionError(
                ErrorCode.ILLEGAL_TRANSITION,
                f'Cannot show question {target} after question {self._question_index}',
            ))
        return Outcome.success(None, self._begin_countdown(target, 'show_question'))

    def _close_by_host(self) -> Outcome:
        if self._status is not SessionStatus.QUESTION_ACTIVE:
            return Outcome.failure(illegal('close_question', self._status))
        return Outcome.success(None, self._close_question('close_question'))

    def _restart(self) -> Outcome:
        if self._status is SessionStatus.WAITING:
            return Outcome.failure(illegal('restart_timer', self._status))
        change = self._timer.restart()
        if not change.changed:
            return Outcome.success(None, changed=False)
        return Outcome.success(None, [self._state_event(self._status, 'restart_timer')])

    def _end(self, reason: str, trigger: str) -> Outcome:
        return Outcome.success(None, self._end_locked(reason, trigger))

    def _join(self, command: JoinSession) -> Outcome:
        if self.ended:
            return Outcome.failure(SessionError(ErrorCode.SESSION_ENDED, 'Session has ended'))
        existing = self._participants.get(command.participant_id) if command.participant_id else None
        if existing is not None:
            expected = self._rejoin_tokens.get(existing.id)
            if not expected or not command.rejoin_token or not hmac.compare_digest(expected, str(command.rejoin_token)):
                logger.warning(f"[rejoin-refused] session={self.id} participant={existing.id}")
                return Outcome.failure(SessionError(ErrorCode.UNAUTHORIZED, 'Invalid rejoin token'))
            rejoined = existing.with_connection(ConnectionState.CONNECTED)
            self._participants[existing.id] = rejoined
            self._refresh_leaderboard()
            logger.info(f"[participant-rejoined] session={self.id} participant={existing.id}")
            return Outcome.success(None, [ParticipantJoined(rejoined, len(self._participants), rejoined=True)], detail=rejoined)
        if len(self._participants) >= self.options.max_participants:
            return Outcome.failure(SessionError(ErrorCode.SESSION_FULL, 'Session is full'))
        if not self.options.allow_late_join and self._status is not SessionStatus.WAITING:
            return Outcome.failure(SessionError(ErrorCode.LATE_JOIN_CLOSED, 'Late joining is not allowed'))

        self._join_counter += 1
        display_name = (command.display_name or '').strip() or f'Player {self._join_counter}'
        participant = Participant(
            id=uuid.uuid4().hex,
            session_id=self.id,
            display_name=display_name[:64],
            joined_at=self._clock.now(),
            join_order=self._join_counter,
        )
        self._participants[participant.id] = participant
        self._rejoin_tokens[participant.id] = secrets.token_urlsafe(16)
        self._refresh_leaderboard()
        logger.info(f"[participant-joined] session={self.id} participant={participant.id} name={participant.display_name!r}")
        return Outcome.success(None, [ParticipantJoined(participant, len(self._participants))], detail=participant)

    def _submit(self, command: SubmitAnswer, actor: Actor) -> Outcome:
        participant_id = actor.participant_id
        participant = self._participants.get(participant_id) if participant_id else None
        if actor.role is not Role.PARTICIPANT or participant is None:
            return Outcome.failure(SessionError(ErrorCode.PARTICIPANT_NOT_FOUND, 'Join the session before answering'))

        def rejected(error: SessionError) -> Outcome:
            events = [] if error.silent else [AnswerRejected(participant_id, command.question_index, error)]
            return Outcome.failure(error, events=events)

        question = self.current_question()
        if (
            self._status is not SessionStatus.QUESTION_ACTIVE
            or question is None
            or command.question_index != self._question_index
        ):
            return rejected(SessionError(ErrorCode.QUESTION_NOT_ACTIVE, self._not_active_message(command.question_index)))

        result = self._ledger.submit(
            participant_id=participant_id,
            question_index=self._question_index,
            question=question,
            selected_answer_id=command.selected_answer_id,
            remaining_ms=self._timer.remaining_ms() or 0,
            elapsed_ms=self._timer.elapsed_ms() or 0,
        )
        if not result.ok:
            return rejected(result.error)

        record = result.value
        self._refresh_leaderboard()
        total = next((e.total_score for e in self._leaderboard if e.participant_id == participant_id), 0)
        return Outcome.success(None, [
            AnswerAccepted(record=record, display_name=participant.display_name, total_score=total),
            self._leaderboard_event(),
        ], detail=record)

    def _not_active_message(self, question_index: int) -> str:
        if self._status is SessionStatus.COUNTDOWN and question_index == self._question_index:
            return 'Not yet: the question has not started'
        return 'Too late: the question is not accepting answers'

    # ---- transitions shared by host and system triggers ----

    def _begin_countdown(self, index: int, trigger: str) -> List[Any]:
        previous = self._status
        self._question_index = index
        self._status = SessionStatus.COUNTDOWN
        self._timer.start_countdown(index, self.options.countdown_ms)
        return [self._state_event(previous, trigger)]

    def _activate_question(self) -> List[Any]:
        question = self.current_question()
        if question is None:
            raise EngineInvariantError(f'No question at index {self._question_index}')
        previous = self._status
        self._status = SessionStatus.QUESTION_ACTIVE
        self._timer.start_question(self._question_index, question.duration_ms)
        return [self._state_event(previous, 'countdown_elapsed', question)]

    def _close_question(self, trigger: str) -> List[Any]:
        previous = self._status
        elapsed = self._timer.elapsed_ms() or 0
        self._timer.cancel()
        self._status = SessionStatus.QUESTION_CLOSED
        self._ledger.fill_timeouts(self._participants.keys(), self._question_index, elapsed)
        self._refresh_leaderboard()
        return [self._state_event(previous, trigger, self.current_question()), self._leaderboard_event()]

    def _end_locked(self, reason: str, trigger: str) -> List[Any]:
        previous = self._status
        question_live = previous is SessionStatus.QUESTION_ACTIVE or (
            previous is SessionStatus.PAUSED and self._paused_from is SessionStatus.QUESTION_ACTIVE
        )
        elapsed = self._timer.elapsed_ms() or 0
        self._timer.cancel()
        if question_live:
            self._ledger.fill_timeouts(self._participants.keys(), self._question_index, elapsed)
        self._status = SessionStatus.ENDED
        self._paused_from = None
        self.ended_at = self._clock.now()
        self.end_reason = reason
        self._refresh_leaderboard()
        logger.info(f"[session-ended] session={self.id} reason={reason} records={len(self._ledger)}")
        return [self._state_event(previous, trigger, reason=reason), self._leaderboard_event(final=True)]

    def _abort_locked(self, reason: str) -> List[Envelope]:
        if self.ended:
            return []
        try:
            events = self._end_locked(reason, 'abort')
        except Exception:
            logger.exception(f"[abort-failed] session={self.id}")
            self._timer.cancel()
            self._status = SessionStatus.ENDED
            self.end_reason = reason
            return []
        return self._seal(events)

    def _drain_timer(self) -> List[Any]:
        if self.ended:
            return []
        events: List[Any] = []
        for event in self._timer.poll():
            events.append(event)
            if not isinstance(event, TimerExpired):
                continue
            if event.is_countdown and self._status is SessionStatus.COUNTDOWN:
                events.extend(self._activate_question())
                # A zero-length question expires on the same poll
                events.extend(self._timer.poll())
                if self._timer.state is not None and not self._timer.active:
                    events.extend(self._close_question('timer_expired'))
            elif not event.is_countdown and self._status is SessionStatus.QUESTION_ACTIVE:
                events.extend(self._close_question('timer_expired'))
        return events

    # ---- helpers (lock held) ----

    def _state_event(self, previous, trigger, question=None, reason=None) -> SessionStateChanged:
        return SessionStateChanged(
            snapshot=self._snapshot(),
            previous_status=previous,
            trigger=trigger,
            question=question,
            reason=reason,
        )

    def _leaderboard_event(self, final: bool = False) -> LeaderboardUpdated:
        return LeaderboardUpdated(
            entries=self._leaderboard,
            question_index=self._question_index,
            show_to_participants=self.options.show_leaderboard or final,
            limit=self.options.leaderboard_limit,
        )

    def _refresh_leaderboard(self) -> None:
        self._leaderboard = compute_leaderboard(self._participants.values(), self._ledger.records())

    def _connected_count(self) -> int:
        return sum(1 for p in self._participants.values() if p.connected)

    def _snapshot(self) -> SessionSnapshot:
        timer = self._timer.state
        return SessionSnapshot(
            session_id=self.id,
            quiz_id=self.quiz.id,
            quiz_title=self.quiz.title,
            status=self._status,
            current_question_index=self._question_index,
            question_count=self.quiz.question_count,
            created_at=self.created_at,
            participant_count=len(self._participants),
            connected_count=self._connected_count(),
            paused_from=self._paused_from,
            timer=timer,
            remaining_ms=self._timer.remaining_ms() if timer is not None else None,
            last_seq=self._seq,
            options=self.options,
        )

    def _seal(self, events: Sequence[Any]) -> List[Envelope]:
        envelopes = []
        for event in events:
            self._seq += 1
            envelope = Envelope(session_id=self.id, seq=self._seq, event=event)
            if envelope.replayable:
                self._stream.append(envelope)
            self._outbox.append(envelope)
            envelopes.append(envelope)
        return envelopes

    def _flush(self) -> None:
        """Hand queued envelopes to the publisher, oldest first.

        Only one thread drains at a time; envelopes sealed while another
        thread is publishing are picked up by that thread's next pass.
        """
        with self._lock:
            if self._flushing:
                return
            self._flushing = True
        while True:
            with self._lock:
                if not self._outbox:
                    self._flushing = False
                    return
                batch = list(self._outbox)
                self._outbox.clear()
            try:
                self.publisher(batch)
            except Exception:
                # Delivery failures never roll back state; clients resync by seq
                logger.exception(f"[publish-failed] session={self.id} events={len(batch)}")

    def _run_end_hooks(self) -> None:
        for hook in list(self._end_hooks):
            try:
                hook(self)
            except Exception:
                logger.exception(f"[end-hook-failed] session={self.id} hook={getattr(hook, '__name__', hook)}")

    # ---- reporting ----

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            participants = list(self._participants.values())
            leaderboard = self._leaderboard
            snapshot = self._snapshot()
        records = self._ledger.records()
        scores = [e.total_score for e in leaderboard]
        now = self._clock.now()
        end = self.ended_at if self.ended_at is not None else now
        return {
            'session_id': self.id,
            'status': snapshot.status.value,
            'participant_count': len(participants),
            'connected_count': sum(1 for p in participants if p.connected),
            'current_question_index': snapshot.current_question_index,
            'average_score': int(round(sum(scores) / len(scores))) if scores else 0,
            'answers_recorded': len(records),
            'duration_seconds': int((end - self.started_at) / 1000) if self.started_at is not None else 0,
            'questions': question_statistics(self.quiz, records),
        }

    def results(self) -> Dict[str, Any]:
        """Everything the results store keeps for an ended session."""
        records = self._ledger.records()
        return {
            'session_id': self.id,
            'quiz_id': self.quiz.id,
            'quiz_title': self.quiz.title,
            'end_reason': self.end_reason,
            'participants': [p.to_dict() for p in self.participants()],
            'leaderboard': [e.to_dict() for e in self.leaderboard()],
            'answers': [r.to_dict() for r in records],
            'questions': question_statistics(self.quiz, records),
        }
