"""
HD Notes Backend: Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the whole suite.
How:   Store and flow tests run against a real SQLite database (aiosqlite)
       created per test from Base.metadata. Time is injected through a
       mutable clock; mail goes to a recording notifier.

Fixture Hierarchy (all function-scoped):
    clock ─────────────┐
    db_engine          ├── session_service ── otp_service
    └── session_factory├── notifier ───────────┘
        └── db_session │
                       └── test_app (dependency overrides) ── client ── signup_user
    mock_db_session: AsyncMock session for unit tests that never touch SQL
"""

import os
import tempfile

# Settings are read at import time; configure them before any app import
os.environ["DATABASE_URL"] = (
    "sqlite+aiosqlite:///" + os.path.join(tempfile.mkdtemp(prefix="hdnotes_test_"), "app.db")
)
os.environ["SECRET_KEY"] = "test-secret-key-not-real"
os.environ["SMTP_HOST"] = ""
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["SWEEP_INTERVAL_SECONDS"] = "0"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app import models  # noqa: F401
from app.database import Base, get_db_session
from app.dependencies import get_notifier, get_otp_service, get_session_service
from app.exceptions import NotificationDeliveryError
from app.main import create_app
from app.services.mail_base import Notifier
from app.services.otp_service import OtpService
from app.services.session_service import SessionService


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════

class MutableClock:
    """Callable clock the test can move forward."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingNotifier(Notifier):
    """
    Keeps every code it is asked to send.

    fail:   raise NotificationDeliveryError after recording
    delay:  seconds to sleep before recording (dispatch timeout tests)
    """

    kind = "recording"

    def __init__(self):
        self.sent: List[Tuple[str, str, str]] = []
        self.ttls: List[int] = []
        self.fail = False
        self.delay = 0.0

    async def send_code(
        self, to_email: str, code: str, purpose: str, ttl_seconds: int
    ) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append((to_email, code, purpose))
        self.ttls.append(ttl_seconds)
        if self.fail:
            raise NotificationDeliveryError(context={"purpose": purpose})

    async def health_check(self) -> bool:
        return True

    def last_code(self, email: str, purpose: Optional[str] = None) -> str:
        for to_email, code, sent_purpose in reversed(self.sent):
            if to_email == email and (purpose is None or sent_purpose == purpose):
                return code
        raise AssertionError(f"no code was sent to {email}")


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock():
    return MutableClock(datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_db_session():
    """
    AsyncMock standing in for AsyncSession.

    Usage:
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = note
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.delete = AsyncMock()
    session.add = MagicMock()
    return session


# ══════════════════════════════════════════════════════════════════════════
# Service Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def session_service(clock):
    return SessionService(clock=clock, ttl_seconds=7 * 24 * 3600)


@pytest.fixture
def otp_service(notifier, session_service, clock):
    return OtpService(
        notifier=notifier,
        sessions=session_service,
        clock=clock,
        ttl_seconds=600,
        max_attempts=5,
        resend_cooldown_seconds=30,
        dispatch_timeout=1.0,
        code_length=6,
        secret_key="test-secret-key-not-real",
    )


@pytest.fixture
def profile() -> Dict[str, object]:
    return {"full_name": "Ada Lovelace", "date_of_birth": date(1990, 12, 10)}


# ══════════════════════════════════════════════════════════════════════════
# HTTP Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_app(session_factory, otp_service, session_service, notifier):
    """A fresh application wired to the per-test database and services."""
    application = create_app()

    async def _db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db_session] = _db_session
    application.dependency_overrides[get_otp_service] = lambda: otp_service
    application.dependency_overrides[get_session_service] = lambda: session_service
    application.dependency_overrides[get_notifier] = lambda: notifier
    return application


@pytest_asyncio.fixture
async def client(test_app):
    """
    HTTPX client over ASGITransport (the lifespan does not run).

    https base URL: the session cookie is Secure and would not be sent
    back over plain http.
    """
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="https://test") as http:
        yield http


@pytest.fixture
def signup_user(client, notifier):
    """Async helper: register an email through the API, return the session token."""

    async def _signup(email: str) -> str:
        body = {"email": email, "fullName": "Test User", "dateOfBirth": "1995-05-05"}
        sent = await client.post("/api/auth/signup/send-otp", json=body)
        assert sent.status_code == 200, sent.text
        verified = await client.post(
            "/api/auth/signup/verify-otp",
            json={**body, "code": notifier.last_code(email, "signup")},
        )
        assert verified.status_code == 200, verified.text
        return verified.cookies["session_token"]

    return _signup
