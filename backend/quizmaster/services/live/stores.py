"""SQLAlchemy-backed collaborators: the read-only Quiz Store and the results archive."""

import json
from typing import Any, Dict, Optional

from quizmaster import db
from quizmaster.models import Quiz, SessionResult
from .types import QuizDocument


class SqlQuizStore:
    def get_quiz(self, quiz_id) -> Optional[QuizDocument]:
        try:
            key = int(quiz_id)
        except (TypeError, ValueError):
            return None
        quiz = db.session.get(Quiz, key)
        if quiz is None:
            return None
        return quiz.to_document()


class SqlResultsStore:
    """Writes one SessionResult row per ended session.

    End hooks may fire from the timer loop, outside any request, so each
    write opens its own application context.
    """

    def __init__(self, app) -> None:
        self.app = app

    def archive(self, results: Dict[str, Any]) -> None:
        with self.app.app_context():
            existing = SessionResult.query.filter_by(session_id=results['session_id']).first()
            if existing is not None:
                return
            try:
                quiz_id = int(results['quiz_id'])
            except (TypeError, ValueError):
                quiz_id = None
            row = SessionResult(
                session_id=results['session_id'],
                quiz_id=quiz_id,
                end_reason=results.get('end_reason'),
                participant_count=len(results.get('participants') or []),
                leaderboard=json.dumps(results.get('leaderboard') or []),
                answers=json.dumps(results.get('answers') or []),
                question_stats=json.dumps(results.get('questions') or []),
            )
            db.session.add(row)
            try:
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            self.app.logger.info(
                f"[archive] session={row.session_id} participants={row.participant_count} answers={len(results.get('answers') or [])}"
            )
