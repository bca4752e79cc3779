"""Fan-out of session events to Socket.IO rooms, plus the per-session connection map.

Rooms per session:
    session:<id>:players   every participant socket
    session:<id>:host      the host socket(s)

Timer ticks are coalesced per session: if a newer tick is queued before an
older one went out, the older one is dropped. Transition events are never
dropped; clients ignore any seq they have already applied.
"""

from collections import deque
from dataclasses import dataclass
import logging
import threading
from typing import Deque, Dict, List, Optional, Sequence

from .events import Audience, Envelope

logger = logging.getLogger(__name__)


def players_room(session_id: str) -> str:
    return f"session:{session_id}:players"


def host_room(session_id: str) -> str:
    return f"session:{session_id}:host"


@dataclass(frozen=True)
class Connection:
    sid: str
    session_id: str
    role: str
    participant_id: Optional[str] = None


class ConnectionRegistry:
    """sid bookkeeping scoped per session; nothing here is shared across sessions."""

    def __init__(self) -> None:
        self._by_session: Dict[str, Dict[str, Connection]] = {}
        self._sid_index: Dict[str, str] = {}
        self._lock = threading.Lock()

    def bind(self, connection: Connection) -> Optional[Connection]:
        """Attach a socket to a session; returns its previous binding, if any."""
        with self._lock:
            previous = self._unbind_locked(connection.sid)
            self._by_session.setdefault(connection.session_id, {})[connection.sid] = connection
            self._sid_index[connection.sid] = connection.session_id
            return previous

    def bind_host(self, session_id: str, sid: str) -> List[Connection]:
        """Make ``sid`` the session's only host socket; returns the displaced ones."""
        with self._lock:
            self._unbind_locked(sid)
            conns = self._by_session.setdefault(session_id, {})
            displaced = [c for c in conns.values() if c.role == 'host']
            for c in displaced:
                del conns[c.sid]
                self._sid_index.pop(c.sid, None)
            conns[sid] = Connection(sid=sid, session_id=session_id, role='host')
            self._sid_index[sid] = session_id
            return displaced

    def unbind(self, sid: str) -> Optional[Connection]:
        with self._lock:
            return self._unbind_locked(sid)

    def get(self, sid: str) -> Optional[Connection]:
        with self._lock:
            session_id = self._sid_index.get(sid)
            if session_id is None:
                return None
            return self._by_session.get(session_id, {}).get(sid)

    def sids_for_participant(self, session_id: str, participant_id: str) -> List[str]:
        with self._lock:
            return [
                c.sid for c in self._by_session.get(session_id, {}).values()
                if c.participant_id == participant_id
            ]

    def counts(self, session_id: str) -> Dict[str, int]:
        with self._lock:
            conns = list(self._by_session.get(session_id, {}).values())
        return {
            'total_connections': len(conns),
            'participants': sum(1 for c in conns if c.role == 'participant'),
            'hosts': sum(1 for c in conns if c.role == 'host'),
        }

    def _unbind_locked(self, sid: str) -> Optional[Connection]:
        session_id = self._sid_index.pop(sid, None)
        if session_id is None:
            return None
        conns = self._by_session.get(session_id, {})
        conn = conns.pop(sid, None)
        if not conns:
            self._by_session.pop(session_id, None)
        return conn


class SocketBroadcaster:
    def __init__(self, socketio, connections: ConnectionRegistry, namespace: str = '/ws') -> None:
        self.socketio = socketio
        self.connections = connections
        self.namespace = namespace
        self._outboxes: Dict[str, Deque[Envelope]] = {}
        self._draining: Dict[str, bool] = {}
        self._lock = threading.Lock()
        self.dropped = 0

    def publisher_for(self, session_id: str):
        def publish(envelopes: Sequence[Envelope]) -> None:
            self.publish(session_id, envelopes)
        return publish

    def publish(self, session_id: str, envelopes: Sequence[Envelope]) -> None:
        """Queue events and deliver them unless another thread is already draining."""
        with self._lock:
            outbox = self._outboxes.setdefault(session_id, deque())
            for envelope in envelopes:
                if envelope.droppable:
                    stale = [e for e in outbox if e.droppable and e.name == envelope.name]
                    for e in stale:
                        outbox.remove(e)
                    self.dropped += len(stale)
                outbox.append(envelope)
            if self._draining.get(session_id):
                return
            self._draining[session_id] = True
        self._drain(session_id)

    def _drain(self, session_id: str) -> None:
        while True:
            with self._lock:
                outbox = self._outboxes.get(session_id)
                if not outbox:
                    self._draining.pop(session_id, None)
                    self._outboxes.pop(session_id, None)
                    return
                envelope = outbox.popleft()
            try:
                self._deliver(envelope)
            except Exception:
                logger.exception(f"[broadcast-failed] session={session_id} event={envelope.name} seq={envelope.seq}")

    def _deliver(self, envelope: Envelope) -> None:
        event = envelope.event
        session_id = envelope.session_id
        audience = event.audience
        if audience is Audience.SESSION:
            self._emit(envelope.name, envelope.to_wire(for_host=False), players_room(session_id))
            self._emit(envelope.name, envelope.to_wire(for_host=True), host_room(session_id))
        elif audience is Audience.HOSTS:
            self._emit(envelope.name, envelope.to_wire(for_host=True), host_room(session_id))
        else:
            payload = envelope.to_wire(for_host=False)
            for sid in self.connections.sids_for_participant(session_id, event.target):
                self._emit(envelope.name, payload, sid)
            if envelope.name == 'answer_accepted':
                self._emit(envelope.name, envelope.to_wire(for_host=True), host_room(session_id))

    def _emit(self, name: str, payload, to: str) -> None:
        self.socketio.emit(name, payload, to=to, namespace=self.namespace)
