"""
Pytest fixtures for testing
"""
import smtplib
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from subtracker.infrastructure.db import models  # noqa: F401  (регистрирует таблицы)
from subtracker.infrastructure.db.session import Base
from subtracker.infrastructure.store.sql_store import SqlSubscriptionStore
from subtracker.domain.user import AuthUser

# 2026-01-15 10:00 UTC
NOW = datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)


class FakeClock:
    """Epoch-ms clock that moves forward only when told to"""

    def __init__(self, start_ms: int = NOW_MS):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def tick(self, ms: int = 1000) -> int:
        self.now_ms += ms
        return self.now_ms


class FakeMailer:
    """Collects outgoing emails instead of talking to SMTP"""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send(self, to, subject, body):
        if self.fail:
            raise smtplib.SMTPException("relay down")
        self.sent.append((to, subject, body))
        return True

    def last_token(self):
        body = self.sent[-1][2]
        return body.split("token=", 1)[1].split()[0]


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads (TestClient runs sync routes in a pool)"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False)


@pytest.fixture
def db_session(session_factory) -> Session:
    """Create database session for tests"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(session_factory, clock):
    s = SqlSubscriptionStore(session_factory, clock=clock)
    yield s
    s.close()


@pytest.fixture
def alice():
    return AuthUser(uid="alice-uid", email="alice@example.com", email_verified=True)


@pytest.fixture
def bob():
    return AuthUser(uid="bob-uid", email="bob@example.com", email_verified=True)


# === HTTP client ===

TEST_EMAIL = "alice@example.com"
TEST_PASSWORD = "secret123"


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def auth_gateway(session_factory, mailer):
    from subtracker.config import Settings
    from subtracker.infrastructure.auth.gateway import LocalAuthGateway

    return LocalAuthGateway(
        session_factory,
        mailer=mailer,
        settings=Settings(APP_BASE_URL="http://testserver"),
        token_verifier=lambda token: {"uid": "google-uid", "email": "carol@gmail.com"},
    )


@pytest.fixture
def registry(store):
    from subtracker.application.session import SessionRegistry

    r = SessionRegistry(lambda: store)
    yield r
    r.close_all()


@pytest.fixture
def client(auth_gateway, registry):
    """TestClient с подменёнными gateway / registry"""
    from fastapi.testclient import TestClient
    from subtracker.api.deps import get_auth_gateway, get_session_registry
    from subtracker.main import app

    app.dependency_overrides[get_auth_gateway] = lambda: auth_gateway
    app.dependency_overrides[get_session_registry] = lambda: registry
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def verified_user(auth_gateway, mailer):
    """Password account with a confirmed email"""
    auth_gateway.sign_up(TEST_EMAIL, TEST_PASSWORD)
    return auth_gateway.verify_email(mailer.last_token())


@pytest.fixture
def authenticated_client(client, verified_user):
    """Client с авторизованной сессией"""
    response = client.post(
        "/login", data={"email": TEST_EMAIL, "password": TEST_PASSWORD}, follow_redirects=False,
    )
    assert response.status_code == 302
    return client
