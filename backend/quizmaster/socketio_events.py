from flask import current_app, request
from flask_socketio import join_room, leave_room, emit
from quizmaster import socketio
from quizmaster.services.live.broadcaster import Connection, host_room, players_room
from quizmaster.services.live.commands import (
    Actor,
    CloseQuestion,
    EndSession,
    JoinSession,
    PauseSession,
    RestartTimer,
    ResumeSession,
    ShowQuestion,
    StartSession,
    SubmitAnswer,
)
from quizmaster.services.live.errors import ErrorCode, SessionError
from quizmaster.services.live.types import SessionStatus
from typing import Any, Dict, Optional

NAMESPACE = '/ws'


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _registry():
    return current_app.extensions['live_sessions']


def _connections():
    return current_app.extensions['live_connections']


def _emit_error(code: ErrorCode, message: str) -> None:
    emit('error', SessionError(code, message).to_dict())


def _session_payload(session, for_host: bool) -> Dict[str, Any]:
    payload = {'session': session.snapshot().to_dict()}
    question = session.current_question()
    if question is not None and session.status in (
        SessionStatus.QUESTION_ACTIVE, SessionStatus.QUESTION_CLOSED, SessionStatus.PAUSED
    ):
        reveal = for_host or session.status is SessionStatus.QUESTION_CLOSED
        payload['question'] = question.to_dict(reveal=reveal)
    if for_host or session.options.show_leaderboard:
        limit = None if for_host else session.options.leaderboard_limit
        payload['leaderboard'] = [e.to_dict() for e in session.leaderboard(limit=limit)]
    return payload


# ---- connection lifecycle ----

def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    conn = _connections().unbind(_get_sid())
    if not conn:
        return
    current_app.logger.info(f"[socket-disconnect] sid={conn.sid} session={conn.session_id} role={conn.role}")
    if conn.role != 'participant' or not conn.participant_id:
        # Host authority survives a disconnect; the host token rejoins
        return
    # Another tab may still be open for the same participant
    if _connections().sids_for_participant(conn.session_id, conn.participant_id):
        return
    session = _registry().get(conn.session_id)
    if session is not None:
        session.mark_disconnected(conn.participant_id)


def handle_join_session(data):
    data = data or {}
    session_id = data.get('session_id')
    if not session_id:
        _emit_error(ErrorCode.SESSION_NOT_FOUND, 'session_id is required')
        return
    session = _registry().get(session_id)
    if session is None:
        _emit_error(ErrorCode.SESSION_NOT_FOUND, 'Session not found')
        return
    participant_id = data.get('participant_id')
    rejoin_token = data.get('rejoin_token')
    command = JoinSession(
        display_name=str(data.get('display_name') or ''),
        participant_id=str(participant_id) if participant_id else None,
        rejoin_token=str(rejoin_token) if rejoin_token else None,
    )
    outcome = session.apply(command, Actor.participant(''))
    if not outcome.ok:
        emit('join_rejected', outcome.error.to_dict())
        return
    participant = outcome.detail
    sid = _get_sid()
    _connections().bind(Connection(sid=sid, session_id=session.id, role='participant', participant_id=participant.id))
    join_room(players_room(session.id))
    payload = _session_payload(session, for_host=False)
    payload['participant'] = participant.to_dict()
    # Only ever sent to the joining socket
    payload['rejoin_token'] = session.rejoin_token(participant.id)
    own = [r.to_dict() for r in session.answer_records() if r.participant_id == participant.id]
    payload['answers'] = own
    emit('session_joined', payload)


def handle_join_session_host(data):
    data = data or {}
    session = _registry().get(data.get('session_id'))
    if session is None:
        _emit_error(ErrorCode.SESSION_NOT_FOUND, 'Session not found')
        return
    if not session.verify_host(data.get('host_token')):
        _emit_error(ErrorCode.UNAUTHORIZED, 'Invalid host token')
        return
    sid = _get_sid()
    displaced = _connections().bind_host(session.id, sid)
    for old in displaced:
        if old.sid == sid:
            continue
        leave_room(host_room(session.id), sid=old.sid, namespace=NAMESPACE)
        emit('host_replaced', {'session_id': session.id}, to=old.sid, namespace=NAMESPACE)
        current_app.logger.info(f"[host-handoff] session={session.id} from={old.sid} to={sid}")
    join_room(host_room(session.id))
    payload = _session_payload(session, for_host=True)
    payload['quiz'] = {
        'id': session.quiz.id,
        'title': session.quiz.title,
        'questions': [q.to_dict(reveal=True) for q in session.quiz.questions],
    }
    payload['participants'] = [p.to_dict() for p in session.participants()]
    payload['stats'] = session.stats()
    emit('session_joined_host', payload)


def handle_leave_session(data=None):
    sid = _get_sid()
    conn = _connections().unbind(sid)
    if not conn:
        emit('error', {'code': ErrorCode.SESSION_NOT_FOUND.value, 'message': 'Not in a session'})
        return
    room = host_room(conn.session_id) if conn.role == 'host' else players_room(conn.session_id)
    leave_room(room)
    emit('left', {'session_id': conn.session_id})
    if conn.role == 'participant' and conn.participant_id:
        session = _registry().get(conn.session_id)
        if session is not None and not _connections().sids_for_participant(conn.session_id, conn.participant_id):
            session.mark_disconnected(conn.participant_id)


# ---- host controls ----

def _host_session():
    conn: Optional[Connection] = _connections().get(_get_sid())
    if not conn or conn.role != 'host':
        _emit_error(ErrorCode.UNAUTHORIZED, 'Only the session host may do that')
        return None
    session = _registry().get(conn.session_id)
    if session is None:
        _emit_error(ErrorCode.SESSION_NOT_FOUND, 'Session not found')
    return session


def _run_host_command(name: str, command) -> None:
    session = _host_session()
    if session is None:
        return
    outcome = session.apply(command, Actor.host())
    if not outcome.ok:
        # Reported to the issuing host only, never broadcast
        payload = outcome.error.to_dict()
        payload['command'] = name
        emit('command_rejected', payload)
        return
    emit('command_ack', {'command': name, 'changed': outcome.changed, 'session': outcome.value.to_dict()})


def handle_start_session(data=None):
    _run_host_command('start_session', StartSession())


def handle_pause_session(data=None):
    _run_host_command('pause_session', PauseSession())


def handle_resume_session(data=None):
    _run_host_command('resume_session', ResumeSession())


def handle_show_question(data=None):
    index = (data or {}).get('question_index')
    _run_host_command('show_question', ShowQuestion(question_index=int(index) if index is not None else None))


def handle_close_question(data=None):
    _run_host_command('close_question', CloseQuestion())


def handle_restart_timer(data=None):
    _run_host_command('restart_timer', RestartTimer())


def handle_end_session(data=None):
    _run_host_command('end_session', EndSession())


# ---- participant actions ----

def handle_submit_answer(data):
    data = data or {}
    conn = _connections().get(_get_sid())
    if not conn or conn.role != 'participant':
        _emit_error(ErrorCode.PARTICIPANT_NOT_FOUND, 'Join the session before answering')
        return
    session = _registry().get(conn.session_id)
    if session is None:
        _emit_error(ErrorCode.SESSION_NOT_FOUND, 'Session not found')
        return
    try:
        question_index = int(data.get('question_index'))
    except (TypeError, ValueError):
        emit('answer_rejected', SessionError(ErrorCode.INVALID_ANSWER, 'question_index is required').to_dict())
        return
    answer_id = data.get('answer_id')
    command = SubmitAnswer(
        question_index=question_index,
        selected_answer_id=str(answer_id) if answer_id is not None else None,
        client_submit_time=data.get('client_time'),
    )
    # Accepted/rejected feedback goes out through the session's publisher
    session.apply(command, Actor.participant(conn.participant_id))


# ---- queries ----

def handle_get_leaderboard(data=None):
    conn = _connections().get(_get_sid())
    if not conn:
        _emit_error(ErrorCode.SESSION_NOT_FOUND, 'Not in session')
        return
    session = _registry().get(conn.session_id)
    if session is None:
        _emit_error(ErrorCode.SESSION_NOT_FOUND, 'Session not found')
        return
    is_host = conn.role == 'host'
    if not is_host and not session.options.show_leaderboard and not session.ended:
        return
    limit = None if is_host else session.options.leaderboard_limit
    emit('leaderboard', {
        'session_id': session.id,
        'leaderboard': [e.to_dict() for e in session.leaderboard(limit=limit)],
    })


def handle_sync_session(data=None):
    """Replay missed transition events after a reconnect."""
    conn = _connections().get(_get_sid())
    if not conn:
        _emit_error(ErrorCode.SESSION_NOT_FOUND, 'Not in session')
        return
    session = _registry().get(conn.session_id)
    if session is None:
        _emit_error(ErrorCode.SESSION_NOT_FOUND, 'Session not found')
        return
    try:
        since = int((data or {}).get('since_seq') or 0)
    except (TypeError, ValueError):
        since = 0
    for_host = conn.role == 'host'
    missed = session.events_since(since)
    for envelope in missed:
        emit(envelope.name, envelope.to_wire(for_host=for_host))
    payload = _session_payload(session, for_host=for_host)
    payload['replayed'] = len(missed)
    emit('session_synced', payload)


def handle_ping(data):
    emit('pong', data or {})


def handle_error(exc):
    current_app.logger.exception(f"[socket-error] sid={_get_sid()} event={getattr(request, 'event', {}).get('message')}")
    emit('error', {'code': 'InternalError', 'message': 'Something went wrong handling that request'})


def register_socketio_handlers(namespace: str = NAMESPACE) -> None:
    """Register Socket.IO event handlers on the live-session namespace."""
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'join_session': handle_join_session,
        'join_session_host': handle_join_session_host,
        'leave_session': handle_leave_session,
        'start_session': handle_start_session,
        'pause_session': handle_pause_session,
        'resume_session': handle_resume_session,
        'show_question': handle_show_question,
        'close_question': handle_close_question,
        'restart_timer': handle_restart_timer,
        'end_session': handle_end_session,
        'submit_answer': handle_submit_answer,
        'get_leaderboard': handle_get_leaderboard,
        'sync_session': handle_sync_session,
        'ping': handle_ping,
    }
    for name, handler in handlers.items():
        socketio.on_event(name, handler, namespace=namespace)
    socketio.on_error(namespace)(handle_error)
