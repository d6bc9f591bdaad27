"""
Shared fixtures: explicit Settings, fakes for every external collaborator,
and a factory that builds the full application around them.
"""

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from boilerplate.core.config import Settings
from boilerplate.main import create_app
from boilerplate.middleware.rate_limit import RateLimiter
from boilerplate.security.auth_provider import AuthenticationError, AuthIdentity
from boilerplate.services.jobs import JobService


class RecordingSink:
    """Observability sink that remembers every call."""

    def __init__(self):
        self.events = []
        self.durations = []

    def record_event(self, name, attributes=None):
        self.events.append((name, dict(attributes or {})))

    def record_duration(self, operation, phase, duration_ms, status):
        assert duration_ms >= 0
        self.durations.append((operation, phase, status))


class FakeAuthProvider:
    """Maps fixed bearer tokens to identities; everything else is rejected."""

    def __init__(self):
        self.identities = {
            "member-token": AuthIdentity("u-1", "member", frozenset({"reports.read"})),
            "admin-token": AuthIdentity("u-admin", "admin", frozenset({"reports.read", "reports.export"})),
        }
        self.calls = []

    async def verify(self, credential):
        self.calls.append(credential)
        try:
            return self.identities[credential]
        except KeyError:
            raise AuthenticationError("unknown token") from None


class FakeDatabase:
    def __init__(self, healthy=True):
        self.healthy = healthy
        self.closed = False

    async def ping(self):
        if not self.healthy:
            raise ConnectionError("database unreachable")
        return True

    async def close(self):
        self.closed = True


class FakeRedis:
    def __init__(self, healthy=True):
        self.healthy = healthy

    async def ping(self):
        if not self.healthy:
            raise ConnectionError("redis unreachable")
        return True

    async def aclose(self):
        return None


class FakeCelery:
    def __init__(self):
        self.sent = []

    def send_task(self, name, **kwargs):
        self.sent.append((name, kwargs))
        return SimpleNamespace(id=f"task-{len(self.sent)}")


@pytest.fixture
def settings():
    return Settings(
        ENVIRONMENT="test",
        LOG_LEVEL="DEBUG",
        REDIS_URL=None,
        CORS_ALLOWED_ORIGINS="http://app.test",
        RATE_LIMIT="1000/s",
        AUTH_JWT_SECRET="test-secret-0123456789-abcdefghijklmnop",
        SERVER_WRITE_TIMEOUT_SEC=5.0,
        TRACING_ENABLED=False,
    )


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def auth_provider():
    return FakeAuthProvider()


@pytest.fixture
def celery():
    return FakeCelery()


@pytest.fixture
def make_app(settings, sink, auth_provider, celery):
    """
    Build the full app. Keyword overrides replace the default fakes, e.g.
    make_app(rate_limiter=RateLimiter(1, 60)) or make_app(database=FakeDatabase(False)).
    """

    def _make(**overrides):
        kwargs = dict(
            settings=settings,
            auth_provider=auth_provider,
            observability=sink,
            database=FakeDatabase(),
            redis_client=None,
            tracer=None,
            rate_limiter=RateLimiter.from_rate(settings.RATE_LIMIT),
            jobs=JobService(celery),
        )
        kwargs.update(overrides)
        return create_app(**kwargs)

    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return TestClient(app)
