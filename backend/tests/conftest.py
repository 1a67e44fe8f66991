import os
import sys
from functools import partial

import pytest

# Ensure the backend root (containing the `talking_token` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from talking_token import create_app, db, socketio
from talking_token.services.session import SessionEngine, SessionSettings, TimerService


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DEFAULT_MAX_SPEAKING_SEC = 90
    MIN_SPEAKING_SEC = 10
    MAX_SPEAKING_SEC = 180
    TOKEN_PASS_METHOD = 'facilitator'
    START_TIMER_ON_PASS = False
    TIMER_FLUSH_SECONDS = 5
    TIMER_FLUSH_INTERVAL_SEC = 3
    TIMER_TICK_SEC = 1.0
    CONTROL_DEBOUNCE_MS = 0


class FakeClock:
    """Manually advanced clock for both the monotonic timer and wall time."""

    def __init__(self, start=1000.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import talking_token.models  # noqa: F401
        db.create_all()
        yield application
        application.extensions['talking_token'].clear()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


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


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def make_engine(clock):
    """Build engines whose timer runs inline against the fake clock."""
    engines = []

    def _make(max_speaking_seconds=90, pass_method='facilitator', start_on_pass=False, **kwargs):
        engine = SessionEngine(
            max_speaking_seconds=max_speaking_seconds,
            settings=SessionSettings(pass_method=pass_method, start_on_pass=start_on_pass),
            timer_factory=partial(TimerService, inline=True, clock=clock),
            clock=clock,
            **kwargs,
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.shutdown()


@pytest.fixture()
def run_clock(clock):
    """Advance time one step at a time, letting the inline timer flush."""

    def _run(engine, seconds, step=1.0):
        elapsed = 0.0
        while elapsed < seconds:
            clock.advance(step)
            engine.timer.advance()
            elapsed += step

    return _run
