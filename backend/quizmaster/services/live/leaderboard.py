"""Ranked views and statistics derived from the answer ledger."""

from collections import Counter
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from .types import AnswerRecord, LeaderboardEntry, Participant, QuizDocument


def compute_leaderboard(participants: Iterable[Participant], records: Iterable[AnswerRecord]) -> Tuple[LeaderboardEntry, ...]:
    """Full recomputation from the AnswerRecord set.

    Order: total score desc, correct count desc, then earlier joiners first.
    Ranks are positional, so a full tie is still broken by join time.
    """
    totals: Dict[str, List[int]] = {}
    for record in records:
        score, correct, answered = totals.setdefault(record.participant_id, [0, 0, 0])
        totals[record.participant_id] = [
            score + record.points_awarded,
            correct + (1 if record.is_correct else 0),
            answered + (0 if record.timed_out else 1),
        ]

    rows = []
    for p in participants:
        score, correct, answered = totals.get(p.id, (0, 0, 0))
        rows.append((p, score, correct, answered))
    rows.sort(key=lambda row: (-row[1], -row[2], row[0].joined_at, row[0].join_order, row[0].id))

    entries: List[LeaderboardEntry] = []
    for rank, (p, score, correct, answered) in enumerate(rows, start=1):
        entries.append(LeaderboardEntry(
            participant_id=p.id,
            display_name=p.display_name,
            total_score=score,
            correct_count=correct,
            answered_count=answered,
            rank=rank,
            connected=p.connected,
        ))
    return tuple(entries)


def question_statistics(quiz: QuizDocument, records: Sequence[AnswerRecord]) -> List[Dict[str, Any]]:
    """Per-question answer distribution, correctness and timeouts."""
    stats = []
    for index, question in enumerate(quiz.questions):
        answered = [r for r in records if r.question_index == index]
        if not answered:
            stats.append({'question_index': index, 'question_id': question.id, 'responses': 0})
            continue
        chosen = Counter(r.selected_answer_id for r in answered if not r.timed_out)
        correct = sum(1 for r in answered if r.is_correct)
        real = [r for r in answered if not r.timed_out]
        stats.append({
            'question_index': index,
            'question_id': question.id,
            'responses': len(answered),
            'correct': correct,
            'timed_out': len(answered) - len(real),
            'correct_rate': round(correct / len(answered), 4),
            'average_offset_ms': int(sum(r.submitted_at_offset_ms for r in real) / len(real)) if real else None,
            'distribution': {option.id: chosen.get(option.id, 0) for option in question.answers},
        })
    return stats
