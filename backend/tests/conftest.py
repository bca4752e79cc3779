import os
import sys
import pytest

# Ensure the backend root (containing the `quizmaster` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from quizmaster import create_app, db, socketio
from quizmaster.services.live.clock import ManualClock
from quizmaster.services.live.commands import Actor, JoinSession, StartSession
from quizmaster.services.live.session import LiveSession
from quizmaster.services.live.types import AnswerOption, QuestionDoc, QuizDocument, SessionOptions


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    COUNTDOWN_DURATION_SEC = 5
    FINAL_SECONDS_THRESHOLD = 10
    MAX_PARTICIPANTS = 50
    ALLOW_LATE_JOIN = True
    SHOW_LEADERBOARD = True
    LEADERBOARD_LIMIT = 10


def build_quiz(question_count=2, points=100, time_limit_seconds=30, quiz_id='quiz-1'):
    questions = []
    for q in range(question_count):
        answers = tuple(
            AnswerOption(id=f'q{q}-a{a}', text=f'Answer {a}', is_correct=(a == 0))
            for a in range(4)
        )
        questions.append(QuestionDoc(
            id=f'q{q}',
            text=f'Question {q}',
            answers=answers,
            points=points,
            time_limit_seconds=time_limit_seconds,
        ))
    return QuizDocument(id=quiz_id, title='Test Quiz', questions=tuple(questions))


class Recorder:
    """Publisher that keeps every envelope it is handed."""

    def __init__(self):
        self.envelopes = []

    def __call__(self, envelopes):
        self.envelopes.extend(envelopes)

    def names(self):
        return [e.name for e in self.envelopes]

    def clear(self):
        self.envelopes = []


@pytest.fixture()
def clock():
    return ManualClock(start_ms=1_000_000)


@pytest.fixture()
def recorder():
    return Recorder()


@pytest.fixture()
def make_session(clock, recorder):
    def _make(question_count=2, points=100, time_limit_seconds=30, session_id='s-1', **options):
        return LiveSession(
            session_id=session_id,
            quiz=build_quiz(question_count, points, time_limit_seconds),
            clock=clock,
            options=SessionOptions(**options),
            host_token='host-token',
            publisher=recorder,
        )
    return _make


@pytest.fixture()
def join(clock):
    def _join(session, name, advance_ms=0):
        if advance_ms:
            clock.advance(advance_ms)
        outcome = session.apply(JoinSession(display_name=name), Actor.participant(''))
        assert outcome.ok, outcome.error
        return outcome.detail
    return _join


@pytest.fixture()
def active_session(make_session, join, clock):
    """Two-question session with question 0 answerable and three joined participants."""
    session = make_session()
    players = [join(session, name, advance_ms=10) for name in ('Alice', 'Bob', 'Cara')]
    assert session.apply(StartSession(), Actor.host()).ok
    clock.advance(5000)
    session.tick()
    return session, players


@pytest.fixture()
def flask_app(clock):
    application = create_app(TestConfig)
    application.extensions['live_sessions'].clock = clock
    # Each request pushes its own context, so Flask-Login state never crosses clients
    with application.app_context():
        # Ensure models are imported so tables are created
        import quizmaster.models  # noqa: F401
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def registry(flask_app):
    return flask_app.extensions['live_sessions']


@pytest.fixture()
def demo_quiz_id(flask_app):
    from quizmaster import seed_demo_data
    with flask_app.app_context():
        quiz = seed_demo_data()
        db.session.commit()
        return quiz.id


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def host_client(flask_app, demo_quiz_id):
    test_client = flask_app.test_client()
    res = test_client.post('/login', json={'username': 'host', 'password': 'password'})
    assert res.status_code == 200
    return test_client


@pytest.fixture()
def sio_factory(flask_app):
    created = []

    def _make():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws'
        )
        test_client.get_received('/ws')  # flush 'connected'
        created.append(test_client)
        return test_client

    yield _make
    for test_client in created:
        try:
            test_client.disconnect(namespace='/ws')
        except Exception:
            pass
