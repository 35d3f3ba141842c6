"""
Shared fixtures: throwaway SQLite database, fake channel senders and an
app wired to both.
"""

from __future__ import annotations

import os

# Must be set before backend.app.core.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "development")
for _key in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER", "SENDGRID_API_KEY"):
    os.environ.pop(_key, None)

from typing import Dict, Tuple

import httpx
import pytest

from backend.app.alerts.dispatcher import DeliveryLog, NotificationDispatcher
from backend.app.core.database import build_engine, build_session_factory, init_db
from backend.app.users.models import UserIdentity
from tests.helpers import (
    FakeEmailSender,
    FakeSmsSender,
    RecordingSleep,
    auth_headers,
    make_user,
)


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'sentinel-test.db'}"


@pytest.fixture
async def engine(database_url):
    engine = build_engine(database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sms_sender() -> FakeSmsSender:
    return FakeSmsSender()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def dispatcher(sms_sender, email_sender, sleep) -> NotificationDispatcher:
    return NotificationDispatcher(sms_sender, email_sender, DeliveryLog(), sleep=sleep)


@pytest.fixture
async def app(database_url, dispatcher):
    from backend.app.main import create_app

    app = create_app(database_url=database_url, dispatcher=dispatcher)
    await init_db(app.state.engine)
    yield app
    await dispatcher.drain()
    await app.state.engine.dispose()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def api_user(app) -> Tuple[UserIdentity, Dict[str, str]]:
    """A committed user in the app database plus matching auth headers."""
    async with app.state.session_factory() as s:
        user = await make_user(s)
        await s.commit()
    return user, auth_headers(user)
