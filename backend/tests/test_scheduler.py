from conftest import build_quiz
from quizmaster.services.live.clock import ManualClock
from quizmaster.services.live.commands import Actor, EndSession, StartSession
from quizmaster.services.live.registry import SessionRegistry
from quizmaster.services.live.scheduler import TickScheduler
from quizmaster.services.live.types import SessionStatus


class Spawner:
    def __init__(self):
        self.tasks = []

    def __call__(self, fn, *args):
        self.tasks.append((fn, args))

    def run_all(self):
        for fn, args in self.tasks:
            fn(*args)


def test_disabled_scheduler_spawns_nothing(make_session):
    spawn = Spawner()
    scheduler = TickScheduler(spawn=spawn, sleep=lambda s: None, enabled=False)
    assert scheduler.schedule(make_session()) is False
    assert spawn.tasks == []


def test_one_task_per_session(make_session):
    spawn = Spawner()
    scheduler = TickScheduler(spawn=spawn, sleep=lambda s: None)
    session = make_session()
    assert scheduler.schedule(session)
    assert not scheduler.schedule(session)
    assert len(spawn.tasks) == 1
    assert scheduler.is_scheduled(session.id)


def test_loop_drives_timers_until_session_ends(make_session, clock, recorder):
    session = make_session(question_count=1, time_limit_seconds=1)
    spawn = Spawner()

    def sleep(seconds):
        clock.advance(int(seconds * 1000))
        if session.status is SessionStatus.QUESTION_CLOSED:
            session.apply(EndSession(), Actor.host())

    scheduler = TickScheduler(spawn=spawn, sleep=sleep, interval_ms=100)
    session.apply(StartSession(), Actor.host())
    scheduler.schedule(session)
    spawn.run_all()

    assert session.ended
    assert not scheduler.is_scheduled(session.id)
    names = recorder.names()
    assert names.count('timer_expired') == 2  # countdown, then the question
    assert 'timer_tick' in names


def test_cancel_stops_the_loop(make_session, clock):
    session = make_session()
    spawn = Spawner()
    sleeps = []
    scheduler = TickScheduler(spawn=spawn, sleep=sleeps.append)
    session.apply(StartSession(), Actor.host())
    scheduler.schedule(session)
    scheduler.cancel(session)
    spawn.run_all()
    assert sleeps == []
    assert not scheduler.is_scheduled(session.id)
    assert session.status is SessionStatus.COUNTDOWN


def test_cleanup_loop_starts_once():
    spawn = Spawner()
    scheduler = TickScheduler(spawn=spawn, sleep=lambda s: None)
    assert scheduler.start_cleanup(lambda: 0, 60)
    assert not scheduler.start_cleanup(lambda: 0, 60)
    assert len(spawn.tasks) == 1
    assert not TickScheduler(spawn=spawn, sleep=lambda s: None, enabled=False).start_cleanup(lambda: 0, 60)
    assert not TickScheduler(spawn=spawn, sleep=lambda s: None).start_cleanup(lambda: 0, 0)


def test_cleanup_loop_drops_expired_ended_sessions():
    clock = ManualClock(0)
    registry = SessionRegistry(clock=clock, config={'ENDED_SESSION_TTL_SEC': 60})
    old = registry.create_session('q', quiz=build_quiz()).value
    live = registry.create_session('q', quiz=build_quiz()).value
    old.apply(EndSession(), Actor.host())
    spawn = Spawner()
    sleeps = []

    def sleep(seconds):
        sleeps.append(seconds)
        clock.advance(int(seconds * 1000))
        if len(sleeps) == 3:
            scheduler.stop_cleanup()

    scheduler = TickScheduler(spawn=spawn, sleep=sleep)
    scheduler.start_cleanup(registry.cleanup, 30)
    spawn.run_all()

    assert sleeps == [30.0, 30.0, 30.0]
    assert registry.get(old.id) is None
    assert registry.get(live.id) is live
    # The loop released its slot and may be started again
    assert scheduler.start_cleanup(registry.cleanup, 30)


def test_cleanup_failure_keeps_the_loop_alive():
    spawn = Spawner()
    calls = []

    def cleanup():
        calls.append(1)
        raise RuntimeError('boom')

    def sleep(seconds):
        if len(calls) == 2:
            scheduler.stop_cleanup()

    scheduler = TickScheduler(spawn=spawn, sleep=sleep)
    scheduler.start_cleanup(cleanup, 1)
    spawn.run_all()
    assert len(calls) == 2


def test_app_starts_cleanup_with_first_session(flask_app, host_client, demo_quiz_id):
    scheduler = flask_app.extensions['live_scheduler']
    spawned = []
    scheduler.enabled = True
    scheduler._spawn = lambda fn, *args: spawned.append(fn)

    for _ in range(2):
        res = host_client.post('/api/sessions', json={'quiz_id': demo_quiz_id})
        assert res.status_code == 201

    assert spawned.count(scheduler._cleanup_worker) == 1
    assert spawned.count(scheduler._worker) == 2
    scheduler.stop_cleanup()
