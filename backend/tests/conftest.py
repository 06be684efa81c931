import os
import sys
import pytest

# Ensure the backend root (containing the `tatanyisani` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from tatanyisani import create_app, db, socketio
from tatanyisani.models import User
from tatanyisani.services.duels import countdown


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    DUEL_STAKE = 20
    SCORE_INCREMENT = 10
    STARTING_POINTS = 100
    DUEL_DURATION_SEC = 60
    WRITE_RETRY_ATTEMPTS = 3
    TIMER_HEARTBEAT_SEC = 0


class FakeClock:
    """Stands in for the server clock so countdown tests are deterministic."""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture()
def flask_app():
    # No app context stays pushed: every request (and Flask-Login's `g`)
    # gets its own, like separate browsers would.
    application = create_app(TestConfig)
    with application.app_context():
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def app_ctx(flask_app):
    with flask_app.app_context():
        yield flask_app
        db.session.remove()


@pytest.fixture()
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(countdown, 'server_now', fake)
    return fake


@pytest.fixture()
def make_user(flask_app):
    """Create a player with a balance and return their id."""
    def _make(username, points=100, display_name=None):
        with flask_app.app_context():
            user = User(username=username, display_name=display_name or username.title(), points=points)
            user.set_password('password')
            db.session.add(user)
            db.session.commit()
            return user.id
    return _make


@pytest.fixture()
def login_client(flask_app):
    """Return an HTTP client with its own cookie jar, logged in as `username`."""
    def _login(username):
        c = flask_app.test_client()
        res = c.post('/login', json={'username': username, 'password': 'password'})
        assert res.status_code == 200
        return c
    return _login


@pytest.fixture()
def balance_of(flask_app):
    def _balance(user_id):
        from tatanyisani.services.duels import ledger
        with flask_app.app_context():
            return ledger.balance(user_id)
    return _balance


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
