from quizmaster import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import json

from quizmaster.services.live.types import AnswerOption as AnswerOptionDoc, QuestionDoc, QuizDocument


def _utcnow():
    return datetime.now(timezone.utc)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class Quiz(db.Model):
    __tablename__ = 'quiz'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    questions = db.relationship(
        'Question', back_populates='quiz', order_by='Question.position', cascade='all, delete-orphan'
    )

    def to_document(self) -> QuizDocument:
        """Detached, immutable copy for a live session (the quiz cannot change under it)."""
        return QuizDocument(
            id=str(self.id),
            title=self.title,
            questions=tuple(q.to_document() for q in self.questions),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'question_count': len(self.questions),
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    text = db.Column(db.Text, nullable=False)
    points = db.Column(db.Integer, nullable=False, default=100)
    time_limit_seconds = db.Column(db.Integer, nullable=False, default=30)
    quiz = db.relationship('Quiz', back_populates='questions')
    answers = db.relationship(
        'AnswerOption', back_populates='question', order_by='AnswerOption.position', cascade='all, delete-orphan'
    )

    def to_document(self) -> QuestionDoc:
        return QuestionDoc(
            id=str(self.id),
            text=self.text,
            answers=tuple(a.to_document() for a in self.answers),
            points=int(self.points or 0),
            time_limit_seconds=int(self.time_limit_seconds or 0),
        )


class AnswerOption(db.Model):
    __tablename__ = 'answer_option'
    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    text = db.Column(db.String(500), nullable=False)
    is_correct = db.Column(db.Boolean, default=False, nullable=False)
    question = db.relationship('Question', back_populates='answers')

    def to_document(self) -> AnswerOptionDoc:
        return AnswerOptionDoc(id=str(self.id), text=self.text, is_correct=bool(self.is_correct))


class SessionResult(db.Model):
    """Archive of an ended live session."""
    __tablename__ = 'session_result'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=True)
    end_reason = db.Column(db.String(64), nullable=True)
    participant_count = db.Column(db.Integer, nullable=False, default=0)
    leaderboard = db.Column(db.Text, nullable=False)  # JSON-encoded list of entries
    answers = db.Column(db.Text, nullable=False)  # JSON-encoded list of answer records
    question_stats = db.Column(db.Text, nullable=True)  # JSON-encoded per-question stats
    ended_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            'session_id': self.session_id,
            'quiz_id': self.quiz_id,
            'end_reason': self.end_reason,
            'participant_count': self.participant_count,
            'leaderboard': json.loads(self.leaderboard) if self.leaderboard else [],
            'answers': json.loads(self.answers) if self.answers else [],
            'questions': json.loads(self.question_stats) if self.question_stats else [],
            'ended_at': self.ended_at.isoformat() if self.ended_at else None,
        }
