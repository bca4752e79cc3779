from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from quizmaster.models import SessionResult
from quizmaster.services.live.commands import (
    Actor,
    CloseQuestion,
    EndSession,
    PauseSession,
    RestartTimer,
    ResumeSession,
    ShowQuestion,
    StartSession,
)
from quizmaster.services.live.errors import ErrorCode


sessions = Blueprint('sessions', __name__)

_HOST_COMMANDS = {
    'start': lambda data: StartSession(),
    'pause': lambda data: PauseSession(),
    'resume': lambda data: ResumeSession(),
    'show': lambda data: ShowQuestion(question_index=data.get('question_index')),
    'close': lambda data: CloseQuestion(),
    'restart-timer': lambda data: RestartTimer(),
    'end': lambda data: EndSession(),
}

_ERROR_STATUS = {
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.QUIZ_NOT_FOUND: 404,
    ErrorCode.UNAUTHORIZED: 403,
    ErrorCode.SESSION_ENDED: 409,
    ErrorCode.ILLEGAL_TRANSITION: 409,
}


def _registry():
    return current_app.extensions['live_sessions']


def _error(error, status=None):
    return jsonify({'error': error.message, 'code': error.code.value}), status or _ERROR_STATUS.get(error.code, 400)


def _is_host(session) -> bool:
    if session.verify_host(request.headers.get('X-Host-Token')):
        return True
    return bool(
        getattr(current_user, 'is_authenticated', False)
        and session.host_user_id is not None
        and current_user.id == session.host_user_id
    )


def _load(session_id):
    found = _registry().require(session_id)
    return found.value, found.error


@sessions.route('', methods=['POST'])
@login_required
def create_session():
    data = request.get_json(silent=True) or {}
    quiz_id = data.get('quiz_id')
    if quiz_id is None:
        return jsonify({'error': 'quiz_id is required'}), 400
    overrides = {k: data[k] for k in ('max_participants', 'allow_late_join', 'show_leaderboard', 'countdown_seconds') if k in data}
    try:
        if 'max_participants' in overrides:
            overrides['max_participants'] = int(overrides['max_participants'])
        if 'countdown_seconds' in overrides:
            overrides['countdown_seconds'] = float(overrides['countdown_seconds'])
    except (TypeError, ValueError):
        return jsonify({'error': 'Invalid session options'}), 400

    created = _registry().create_session(quiz_id, host_user_id=current_user.id, overrides=overrides)
    if not created.ok:
        return _error(created.error)
    session = created.value
    current_app.logger.info(f"[session-create] session={session.id} quiz={quiz_id} host={current_user.id}")
    return jsonify({
        'session_id': session.id,
        'host_token': session.host_token,
        'session': session.snapshot().to_dict(),
    }), 201


@sessions.route('', methods=['GET'])
@login_required
def list_sessions():
    mine = [s for s in _registry().live_sessions() if s.host_user_id == current_user.id]
    return jsonify([s.snapshot().to_dict() for s in mine])


@sessions.route('/<string:session_id>', methods=['GET'])
def get_session(session_id):
    session, error = _load(session_id)
    if error:
        return _error(error)
    payload = session.snapshot().to_dict()
    question = session.current_question()
    if question is not None and session.status.value in ('question_active', 'question_closed', 'paused'):
        reveal = _is_host(session) or session.status.value == 'question_closed'
        payload['question'] = question.to_dict(reveal=reveal)
    return jsonify(payload)


@sessions.route('/<string:session_id>/leaderboard', methods=['GET'])
def get_leaderboard(session_id):
    session, error = _load(session_id)
    if error:
        return _error(error)
    is_host = _is_host(session)
    if not session.options.show_leaderboard and not is_host and not session.ended:
        return jsonify({'error': 'Leaderboard is hidden for this session'}), 403
    limit = request.args.get('limit', type=int) or session.options.leaderboard_limit
    entries = session.leaderboard(limit=None if is_host and 'limit' not in request.args else limit)
    return jsonify({'session_id': session.id, 'leaderboard': [e.to_dict() for e in entries]})


@sessions.route('/<string:session_id>/stats', methods=['GET'])
def get_stats(session_id):
    session, error = _load(session_id)
    if error:
        return _error(error)
    if not _is_host(session):
        return jsonify({'error': 'Only the session host may view statistics'}), 403
    stats = session.stats()
    stats['connections'] = current_app.extensions['live_connections'].counts(session.id)
    return jsonify(stats)


@sessions.route('/<string:session_id>/results', methods=['GET'])
def get_results(session_id):
    row = SessionResult.query.filter_by(session_id=session_id).first()
    if row is None:
        return jsonify({'error': 'No archived results for this session'}), 404
    session = _registry().get(session_id)
    if session is not None and not _is_host(session):
        return jsonify({'error': 'Only the session host may view results'}), 403
    return jsonify(row.to_dict())


@sessions.route('/<string:session_id>/<string:action>', methods=['POST'])
def host_command(session_id, action):
    """HTTP fallback for host controls; same state machine as the socket events."""
    factory = _HOST_COMMANDS.get(action)
    if factory is None:
        return jsonify({'error': f'Unknown action {action}'}), 404
    session, error = _load(session_id)
    if error:
        return _error(error)
    if not _is_host(session):
        return jsonify({'error': 'Only the session host may do that', 'code': ErrorCode.UNAUTHORIZED.value}), 403
    data = request.get_json(silent=True) or {}
    outcome = session.apply(factory(data), Actor.host())
    if not outcome.ok:
        return _error(outcome.error)
    return jsonify(outcome.value.to_dict())
