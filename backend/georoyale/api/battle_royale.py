from datetime import datetime, timezone

from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from werkzeug.exceptions import HTTPException

from georoyale.errors import BattleRoyaleError
from georoyale.services.battle_royale import BattleRoyaleManager


battle_royale = Blueprint('battle_royale', __name__)

ENDPOINTS = {
    'stats': '/api/battle-royale/stats',
    'create': '/api/battle-royale/create',
    'session': '/api/battle-royale/session/<code>',
    'leaderboard': '/api/battle-royale/session/<code>/leaderboard',
    'start': '/api/battle-royale/session/<code>/start',
    'health': '/api/battle-royale/health',
}


def get_manager() -> BattleRoyaleManager:
    return current_app.extensions['battle_royale']


def _now():
    return datetime.now(timezone.utc).isoformat()


def _connected_users() -> int:
    from georoyale.socketio_events import connected_user_count
    return connected_user_count()


@battle_royale.errorhandler(BattleRoyaleError)
def handle_battle_royale_error(exc):
    return jsonify({'error': exc.message}), exc.status_code


@battle_royale.errorhandler(Exception)
def handle_unexpected_error(exc):
    if isinstance(exc, HTTPException):
        return exc
    current_app.logger.exception(f"[battle-royale] unhandled error on {request.path}")
    return jsonify({'error': 'Internal server error'}), 500


@battle_royale.route('/', methods=['GET'])
def service_info():
    stats = get_manager().get_stats()
    return jsonify({
        'success': True,
        'message': 'Battle Royale service is active',
        'data': {
            'service': 'Battle Royale',
            'status': 'active',
            'features': [
                'Real-time multiplayer battles',
                'Session-based gameplay',
                'Elimination rounds',
                'Live leaderboards',
            ],
            'endpoints': ENDPOINTS,
            'current_stats': {
                'active_sessions': stats['active_sessions'],
                'total_players': stats['total_players'],
                'connected_users': _connected_users(),
            },
            'timestamp': _now(),
        },
    })


@battle_royale.route('/stats', methods=['GET'])
def stats():
    return jsonify({
        'success': True,
        'data': {
            'battle_royale': get_manager().get_stats(),
            'connections': {'connected_users': _connected_users()},
            'timestamp': _now(),
        },
    })


@battle_royale.route('/create', methods=['POST'])
@login_required
def create_session():
    data = request.get_json(silent=True) or {}
    current_app.logger.info(f"[create] user={current_user.id} settings={data.get('settings')}")
    session = get_manager().create_session(current_user.id, current_user.username, data.get('settings'))
    return jsonify({'success': True, 'data': {'session': session.summary()}}), 201


@battle_royale.route('/session/<string:code>', methods=['GET'])
def get_session(code):
    session = get_manager().get_session(code)
    return jsonify({'success': True, 'data': {'session': session.to_dict()}})


@battle_royale.route('/session/<string:code>/leaderboard', methods=['GET'])
def get_leaderboard(code):
    leaderboard = get_manager().get_leaderboard(code)
    return jsonify({
        'success': True,
        'data': {
            'leaderboard': leaderboard,
            'session_code': code.upper(),
            'timestamp': _now(),
        },
    })


@battle_royale.route('/session/<string:code>/start', methods=['POST'])
@login_required
def start_session(code):
    current_app.logger.info(f"[start] user={current_user.id} session={code}")
    session = get_manager().start_session(code, current_user.id)
    return jsonify({
        'success': True,
        'data': {
            'session': {
                'code': session.code,
                'status': session.status,
                'current_round': session.current_round,
                'started_at': session.started_at.isoformat() if session.started_at else None,
            },
        },
    })


@battle_royale.route('/health', methods=['GET'])
def health():
    return jsonify({
        'success': True,
        'message': 'Battle Royale service is healthy',
        'data': {
            'battle_royale': get_manager().get_stats(),
            'sockets': {'connected_users': _connected_users()},
            'timestamp': _now(),
        },
    })
