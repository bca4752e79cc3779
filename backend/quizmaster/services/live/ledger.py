"""Append-only answer ledger and the time-weighted scorer.

The ledger enforces at most one AnswerRecord per (participant, question)
under its own lock, independent of the caller's serialization.
"""

import logging
import math
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ErrorCode, Outcome, SessionError
from .types import AnswerRecord, QuestionDoc

logger = logging.getLogger(__name__)

SPEED_BONUS_RATIO = 0.5


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_points(question: QuestionDoc, is_correct: bool, remaining_ms: int, duration_ms: int) -> int:
    """Base points plus up to 50% bonus for answering instantly.

    The bonus decays linearly to zero at the deadline. Wrong answers score 0.
    """
    if not is_correct:
        return 0
    base = int(question.points)
    if duration_ms <= 0:
        return base
    fraction = max(0, min(remaining_ms, duration_ms)) / duration_ms
    return base + _round_half_up(base * SPEED_BONUS_RATIO * fraction)


class AnswerLedger:
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._records: Dict[Tuple[str, int], AnswerRecord] = {}
        self._order: List[AnswerRecord] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._order)

    def get(self, participant_id: str, question_index: int) -> Optional[AnswerRecord]:
        return self._records.get((participant_id, question_index))

    def records(self) -> Tuple[AnswerRecord, ...]:
        with self._lock:
            return tuple(self._order)

    def for_question(self, question_index: int) -> Tuple[AnswerRecord, ...]:
        with self._lock:
            return tuple(r for r in self._order if r.question_index == question_index)

    def submit(
        self,
        participant_id: str,
        question_index: int,
        question: QuestionDoc,
        selected_answer_id: Optional[str],
        remaining_ms: int,
        elapsed_ms: int,
    ) -> Outcome[AnswerRecord]:
        """Record a participant's answer for the active question.

        The caller has already verified the question is active. Duplicate
        submissions are rejected before the answer id is validated.
        """
        with self._lock:
            existing = self._records.get((participant_id, question_index))
            if existing is not None:
                return Outcome.failure(
                    SessionError(ErrorCode.DUPLICATE_ANSWER, 'Answer already recorded for this question'),
                    value=existing,
                )
            if selected_answer_id is not None and question.find_answer(selected_answer_id) is None:
                return Outcome.failure(SessionError(ErrorCode.INVALID_ANSWER, 'Unknown answer for the current question'))

            is_correct = selected_answer_id is not None and selected_answer_id == question.correct_answer_id
            record = AnswerRecord(
                session_id=self.session_id,
                participant_id=participant_id,
                question_index=question_index,
                selected_answer_id=selected_answer_id,
                submitted_at_offset_ms=int(elapsed_ms),
                is_correct=is_correct,
                points_awarded=compute_points(question, is_correct, remaining_ms, question.duration_ms),
            )
            self._append(record)
        logger.info(
            f"[answer] session={self.session_id} participant={participant_id} question={question_index} "
            f"correct={record.is_correct} points={record.points_awarded}"
        )
        return Outcome.success(record)

    def fill_timeouts(self, participant_ids: Iterable[str], question_index: int, offset_ms: int) -> List[AnswerRecord]:
        """Synthesize a zero-point record for everyone who did not answer."""
        created: List[AnswerRecord] = []
        with self._lock:
            for participant_id in participant_ids:
                if (participant_id, question_index) in self._records:
                    continue
                record = AnswerRecord(
                    session_id=self.session_id,
                    participant_id=participant_id,
                    question_index=question_index,
                    selected_answer_id=None,
                    submitted_at_offset_ms=int(offset_ms),
                    is_correct=False,
                    points_awarded=0,
                )
                self._append(record)
                created.append(record)
        if created:
            logger.info(f"[answer-timeout] session={self.session_id} question={question_index} synthesized={len(created)}")
        return created

    def _append(self, record: AnswerRecord) -> None:
        self._records[(record.participant_id, record.question_index)] = record
        self._order.append(record)
