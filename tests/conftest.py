# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pytest fixtures. Each test gets its own SQLite database file."""

import re
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from authstack_server.config import Settings
from authstack_server.database import init_db
from authstack_server.errors import DeliveryFailed
from authstack_server.main import create_app
from authstack_server.services.auth_service import AuthService
from authstack_server.services.credential_store import CredentialStore


class FakeNotifier:
    """Records messages instead of sending them."""

    configured = True

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    async def send(self, to: str, subject: str, body: str) -> None:
        if self.fail:
            raise DeliveryFailed()
        self.sent.append((to, subject, body))

    def last_code(self, to: str) -> str:
        for recipient, _, body in reversed(self.sent):
            if recipient == to:
                return re.search(r"\b(\d{6})\b", body).group(1)
        raise AssertionError(f"no code sent to {to}")


class FakeClock:
    """Settable UTC clock starting at the real current time (tokens are checked against wall time)."""

    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        environment="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        smtp_host=None,
        smtp_user=None,
        google_client_id="test-client-id",
        google_client_secret="test-client-secret",
        frontend_url="http://localhost:3000",
    )


@pytest.fixture
async def app(settings):
    app = create_app(settings)
    await init_db(app.state.engine)
    app.state.notifier = FakeNotifier()
    app.state.clock = FakeClock()
    yield app
    await app.state.engine.dispose()


@pytest.fixture
def notifier(app) -> FakeNotifier:
    return app.state.notifier


@pytest.fixture
def clock(app) -> FakeClock:
    return app.state.clock


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def make_service(app, session, **overrides) -> AuthService:
    state = app.state
    options = {
        "otp_ttl_minutes": state.settings.otp_ttl_minutes,
        "auto_provision": state.settings.oauth_auto_provision,
        "clock": state.clock,
    }
    options.update(overrides)
    return AuthService(
        CredentialStore(session),
        state.password_hasher,
        state.token_issuer,
        state.notifier,
        **options,
    )


@pytest.fixture
async def session(app):
    async with app.state.session_maker() as session:
        yield session


@pytest.fixture
def store(session) -> CredentialStore:
    return CredentialStore(session)


@pytest.fixture
def service(app, session) -> AuthService:
    return make_service(app, session)


@pytest.fixture
def service_factory(app):
    """Build an AuthService on a given session, optionally overriding options."""

    def factory(session, **overrides) -> AuthService:
        return make_service(app, session, **overrides)

    return factory
