from conftest import build_quiz
from quizmaster.services.live.clock import ManualClock
from quizmaster.services.live.commands import Actor, EndSession, StartSession
from quizmaster.services.live.errors import ErrorCode
from quizmaster.services.live.registry import SessionRegistry
from quizmaster.services.live.types import SessionStatus


class MemoryQuizStore:
    def __init__(self, *quizzes):
        self.quizzes = {q.id: q for q in quizzes}
        self.loads = 0

    def get_quiz(self, quiz_id):
        self.loads += 1
        return self.quizzes.get(str(quiz_id))


class MemoryResults:
    def __init__(self):
        self.archived = []

    def archive(self, results):
        self.archived.append(results)


def _registry(**config):
    clock = ManualClock(0)
    store = MemoryQuizStore(build_quiz(quiz_id='7'))
    results = MemoryResults()
    registry = SessionRegistry(quiz_store=store, results_store=results, clock=clock, config=config)
    return registry, clock, store, results


def test_create_loads_quiz_once_and_issues_tokens():
    registry, _, store, _ = _registry()
    session = registry.create_session('7').value
    assert store.loads == 1
    assert session.status is SessionStatus.WAITING
    assert session.host_token and session.verify_host(session.host_token)
    assert not session.verify_host('nope')
    assert registry.get(session.id) is session


def test_create_unknown_quiz():
    registry, _, _, _ = _registry()
    outcome = registry.create_session('404')
    assert outcome.error.code is ErrorCode.QUIZ_NOT_FOUND
    assert registry.sessions() == []


def test_session_ids_are_unique():
    registry, _, _, _ = _registry()
    ids = {registry.create_session('7').value.id for _ in range(50)}
    assert len(ids) == 50


def test_require_unknown_session():
    registry, _, _, _ = _registry()
    assert registry.require('missing').error.code is ErrorCode.SESSION_NOT_FOUND
    assert registry.get(None) is None


def test_options_come_from_config_and_overrides():
    registry, _, _, _ = _registry(MAX_PARTICIPANTS=20, COUNTDOWN_DURATION_SEC=3, SHOW_LEADERBOARD=False)
    session = registry.create_session('7', overrides={'max_participants': 5}).value
    assert session.options.max_participants == 5
    assert session.options.countdown_ms == 3_000
    assert session.options.show_leaderboard is False


def test_listeners_and_archive_on_end():
    registry, _, _, results = _registry()
    created, ended = [], []
    registry.on_session_created(created.append)
    registry.on_session_ended(ended.append)
    session = registry.create_session('7').value
    session.apply(StartSession(), Actor.host())
    session.apply(EndSession(), Actor.host())
    assert created == [session]
    assert ended == [session]
    assert [r['session_id'] for r in results.archived] == [session.id]
    assert results.archived[0]['end_reason'] == 'host'


def test_cleanup_drops_only_old_ended_sessions():
    registry, clock, _, _ = _registry(ENDED_SESSION_TTL_SEC=60)
    old = registry.create_session('7').value
    live = registry.create_session('7').value
    old.apply(EndSession(), Actor.host())

    clock.advance(59_999)
    assert registry.cleanup() == 0
    clock.advance(1)
    assert registry.cleanup() == 1
    assert registry.get(old.id) is None
    assert registry.get(live.id) is live


def test_string_flags_in_overrides_are_parsed():
    registry, _, _, _ = _registry()
    session = registry.create_session(
        '7', overrides={'allow_late_join': 'false', 'show_leaderboard': 'no'}
    ).value
    assert session.options.allow_late_join is False
    assert session.options.show_leaderboard is False

    session = registry.create_session('7', overrides={'allow_late_join': 'Yes'}).value
    assert session.options.allow_late_join is True
