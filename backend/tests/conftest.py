"""Shared fixtures."""
from datetime import datetime, timedelta, timezone

import pytest

from rollcall import create_app
from rollcall.services import build_services
from rollcall.storage import MemoryLedgerStore

SERVICE_CONFIG = {
    'PIN_LENGTH': 4,
    'WINDOW_RETENTION': 4,
    'AUTO_ROTATE': False,
    'MAX_ROTATION_SECONDS': 3600,
    'GRACE_SECONDS': 5,
    'GRACE_POLICY': 'pending',
    'SIGNATURE_VERIFIER': 'none',
    'SIGNATURE_MAX_LENGTH': 4096,
    'FEED_SUPPRESS_SECONDS': 1.5
}

SIGNATURE = 'sig-0123456789abcdef'


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2024, 9, 2, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def make_services(clock, store=None, **overrides):
    config = dict(SERVICE_CONFIG, **overrides)
    return build_services(config, store or MemoryLedgerStore(), clock=clock)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def services(clock):
    """Service registry over a memory ledger with a fake clock."""
    registry = make_services(clock)
    yield registry
    registry.shutdown()


@pytest.fixture
def session(services):
    """An active session rotating every 15 seconds."""
    return services.sessions.start_session('CS101', 'teacher-1', 15)


@pytest.fixture
def app():
    """Create test app."""
    app = create_app('testing')
    yield app
    app.extensions['rollcall'].shutdown()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()
