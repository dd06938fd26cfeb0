import os
import sys
import pytest

# Ensure the backend root (containing the `georoyale` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from georoyale import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    CORS_ORIGINS = ['http://localhost:5173']
    LOG_LEVEL = 'DEBUG'
    BR_MAX_PLAYERS = 8
    BR_MIN_PLAYERS = 2
    BR_MAX_ROUNDS = 3
    BR_ROUND_DURATION_SEC = 30


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    # Set up in a short-lived context; each request and socket event then
    # pushes its own, so per-request login state does not leak between clients
    with application.app_context():
        # Ensure models are imported so tables are created
        import georoyale.models  # noqa: F401
        from georoyale.services.locations import seed_locations
        db.create_all()
        seed_locations()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
    from georoyale import socketio_events
    socketio_events._sid_to_ctx.clear()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def manager(flask_app):
    return flask_app.extensions['battle_royale']


@pytest.fixture()
def user_client(flask_app):
    """Factory: an HTTP client logged in as a freshly registered user."""
    def _make(username, password='password'):
        http = flask_app.test_client()
        res = http.post('/register', json={'username': username, 'password': password})
        assert res.status_code == 201
        http.user = res.get_json()['user']
        return http
    return _make


@pytest.fixture()
def sio_client(flask_app):
    """Factory: a /ws Socket.IO client sharing cookies with an HTTP client."""
    created = []

    def _make(http_client=None):
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=http_client,
            namespace='/ws'
        )
        created.append(test_client)
        return test_client

    yield _make
    for test_client in created:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass
