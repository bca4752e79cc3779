import pytest

from quizmaster.services.live.broadcaster import (
    Connection,
    ConnectionRegistry,
    SocketBroadcaster,
    host_room,
    players_room,
)
from quizmaster.services.live.commands import Actor, JoinSession, StartSession, SubmitAnswer
from quizmaster.services.live.events import Envelope, TimerTick


class FakeSocketIO:
    def __init__(self):
        self.sent = []

    def emit(self, name, payload, to=None, namespace=None):
        self.sent.append((name, to, payload))


@pytest.fixture()
def wiring():
    sio = FakeSocketIO()
    connections = ConnectionRegistry()
    return sio, connections, SocketBroadcaster(sio, connections)


def _tick(seq, remaining_seconds):
    return Envelope('s-1', seq, TimerTick(
        question_index=0,
        remaining_ms=remaining_seconds * 1000,
        remaining_seconds=remaining_seconds,
        duration_ms=30_000,
        is_countdown=False,
        is_final_ten_seconds=False,
    ))


def test_queued_ticks_are_coalesced(wiring):
    sio, _, broadcaster = wiring
    broadcaster.publish('s-1', [_tick(1, 30), _tick(2, 29)])
    delivered = [payload['seq'] for name, to, payload in sio.sent if to == players_room('s-1')]
    assert delivered == [2]
    assert broadcaster.dropped == 1


def test_routing_by_audience(wiring, make_session, clock):
    sio, connections, broadcaster = wiring
    session = make_session()
    session.publisher = broadcaster.publisher_for(session.id)
    connections.bind_host(session.id, 'host-sid')

    ann = session.apply(JoinSession(display_name='Ann'), Actor.participant('')).detail
    ben = session.apply(JoinSession(display_name='Ben'), Actor.participant('')).detail
    connections.bind(Connection('ann-sid', session.id, 'participant', ann.id))
    connections.bind(Connection('ben-sid', session.id, 'participant', ben.id))

    session.apply(StartSession(), Actor.host())
    clock.advance(5_000)
    session.tick()
    sio.sent.clear()

    session.apply(SubmitAnswer(0, 'q0-a0'), Actor.participant(ann.id))
    targets = [(name, to) for name, to, _ in sio.sent]
    assert ('answer_accepted', 'ann-sid') in targets
    assert ('answer_accepted', host_room(session.id)) in targets
    assert not any(to == 'ben-sid' for _, to in targets)
    assert ('leaderboard_updated', players_room(session.id)) in targets


def test_hidden_leaderboard_only_reaches_host(wiring, make_session, clock):
    sio, connections, broadcaster = wiring
    session = make_session(show_leaderboard=False)
    session.publisher = broadcaster.publisher_for(session.id)
    ann = session.apply(JoinSession(display_name='Ann'), Actor.participant('')).detail
    session.apply(StartSession(), Actor.host())
    clock.advance(5_000)
    session.tick()
    sio.sent.clear()

    session.apply(SubmitAnswer(0, 'q0-a0'), Actor.participant(ann.id))
    boards = [to for name, to, _ in sio.sent if name == 'leaderboard_updated']
    assert boards == [host_room(session.id)]


def test_participants_never_see_correct_flags_while_open(wiring, make_session, clock):
    sio, _, broadcaster = wiring
    session = make_session()
    session.publisher = broadcaster.publisher_for(session.id)
    session.apply(StartSession(), Actor.host())
    clock.advance(5_000)
    session.tick()

    opened = [
        (to, payload) for name, to, payload in sio.sent
        if name == 'session_state_changed' and payload['status'] == 'question_active'
    ]
    by_room = dict(opened)
    player_answers = by_room[players_room(session.id)]['question']['answers']
    host_answers = by_room[host_room(session.id)]['question']['answers']
    assert all('is_correct' not in a for a in player_answers)
    assert any(a['is_correct'] for a in host_answers)


def test_connection_registry_host_handoff():
    connections = ConnectionRegistry()
    assert connections.bind_host('s', 'first') == []
    displaced = connections.bind_host('s', 'second')
    assert [c.sid for c in displaced] == ['first']
    assert connections.get('first') is None
    assert connections.counts('s') == {'total_connections': 1, 'participants': 0, 'hosts': 1}
