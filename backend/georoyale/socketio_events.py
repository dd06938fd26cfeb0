from flask import current_app, request
from flask_login import current_user
from flask_socketio import join_room, leave_room, emit
from typing import Dict, Any
import logging

from georoyale import socketio
from georoyale.errors import BattleRoyaleError, InvalidInput
from georoyale.services.battle_royale import session_room

logger = logging.getLogger(__name__)

WS_NAMESPACE = '/ws'

# Authenticated socket context, keyed by sid
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _manager():
    return current_app.extensions['battle_royale']


def _ctx() -> Dict[str, Any]:
    return _sid_to_ctx.get(_get_sid()) or {}


def _session_code(data) -> str:
    code = (data or {}).get('session_code')
    if not code:
        raise InvalidInput('session_code is required')
    return str(code).upper()


def _fail(exc: BattleRoyaleError) -> Dict[str, Any]:
    return {'success': False, 'error': exc.message}


def connected_user_count() -> int:
    return len({ctx['user_id'] for ctx in _sid_to_ctx.values()})


def handle_connect(auth=None):
    if not current_user.is_authenticated:
        logger.info(f"[ws-reject] sid={_get_sid()} unauthenticated")
        return False
    _sid_to_ctx[_get_sid()] = {'user_id': current_user.id, 'username': current_user.username}
    logger.info(f"[ws-connect] sid={_get_sid()} user={current_user.id}")
    emit('connected', {
        'message': 'Connected to Battle Royale server',
        'user_id': current_user.id,
        'username': current_user.username,
    })


def handle_disconnect(*args):
    sid = _get_sid()
    ctx = _sid_to_ctx.pop(sid, None)
    if not ctx:
        return
    logger.info(f"[ws-disconnect] sid={sid} user={ctx['user_id']}")
    _manager().handle_disconnect(ctx['user_id'], sid)


def handle_create_session(data=None):
    ctx = _ctx()
    manager = _manager()
    try:
        session = manager.create_session(ctx['user_id'], ctx['username'], (data or {}).get('settings'))
        # Bind the creator's socket to the seat created for them
        manager.join_session(session.code, ctx['user_id'], ctx['username'], _get_sid())
    except BattleRoyaleError as exc:
        return _fail(exc)
    join_room(session_room(session.code))
    return {'success': True, 'session': session.to_dict()}


def handle_join_session(data=None):
    ctx = _ctx()
    try:
        code = _session_code(data)
        session = _manager().join_session(code, ctx['user_id'], ctx['username'], _get_sid())
    except BattleRoyaleError as exc:
        return _fail(exc)
    join_room(session_room(session.code))
    return {'success': True, 'session': session.to_dict()}


def handle_leave_session(data=None):
    ctx = _ctx()
    try:
        code = _session_code(data)
    except BattleRoyaleError as exc:
        return _fail(exc)
    left = _manager().leave_session(code, ctx['user_id'])
    if left:
        leave_room(session_room(code))
    return {
        'success': left,
        'message': 'Left session successfully' if left else 'Failed to leave session',
    }


def handle_start_session(data=None):
    ctx = _ctx()
    try:
        session = _manager().start_session(_session_code(data), ctx['user_id'])
    except BattleRoyaleError as exc:
        return _fail(exc)
    return {'success': True, 'session': session.to_dict()}


def handle_submit_guess(data=None):
    ctx = _ctx()
    data = data or {}
    guess = data.get('guess') or data
    try:
        result = _manager().submit_guess(
            _session_code(data),
            ctx['user_id'],
            guess.get('latitude'),
            guess.get('longitude'),
        )
    except BattleRoyaleError as exc:
        return _fail(exc)
    return {'success': True, 'guess': result}


def handle_get_session(data=None):
    try:
        session = _manager().get_session(_session_code(data))
    except BattleRoyaleError as exc:
        return _fail(exc)
    return {'success': True, 'session': session.to_dict()}


def handle_get_leaderboard(data=None):
    try:
        leaderboard = _manager().get_leaderboard(_session_code(data))
    except BattleRoyaleError as exc:
        return _fail(exc)
    return {'success': True, 'leaderboard': leaderboard}


def handle_ping(data=None):
    emit('pong', data or {})


def handle_error(exc):
    logger.exception(f"[ws-error] sid={_get_sid()} {exc}")
    return {'success': False, 'error': 'Internal server error'}


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the '/ws' namespace."""
    socketio.on_event('connect', handle_connect, namespace=WS_NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=WS_NAMESPACE)
    socketio.on_event('create-session', handle_create_session, namespace=WS_NAMESPACE)
    socketio.on_event('join-session', handle_join_session, namespace=WS_NAMESPACE)
    socketio.on_event('leave-session', handle_leave_session, namespace=WS_NAMESPACE)
    socketio.on_event('start-session', handle_start_session, namespace=WS_NAMESPACE)
    socketio.on_event('submit-guess', handle_submit_guess, namespace=WS_NAMESPACE)
    socketio.on_event('get-session', handle_get_session, namespace=WS_NAMESPACE)
    socketio.on_event('get-leaderboard', handle_get_leaderboard, namespace=WS_NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=WS_NAMESPACE)
    socketio.on_error(WS_NAMESPACE)(handle_error)
