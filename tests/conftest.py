"""
Shared test fixtures.

Provides a FastAPI TestClient wired to:
  • a temporary SQLite database (via app lifespan)
  • a recording channel dispatcher (no SMTP / SMS traffic)
  • a fake clock shared by the limiter, sessions and challenges

The primary login lives outside this service, so the test app gets an extra
``POST /test-login`` route that calls ``login_user`` the way a real login
handler would.  It sits outside ``/api/`` and is never rate limited.
"""

import pytest
from fastapi import APIRouter, Request, Response
from fastapi.testclient import TestClient
from pydantic import BaseModel

from edge_guard import config, db
from edge_guard.dependencies import login_user
from edge_guard.main import create_app
from edge_guard.services.channels import ContactDirectory
from edge_guard.services.two_factor import TwoFactorService
from edge_guard.sessions import SessionStore
from tests.mocks.models import (
    ADMIN_USER_ID,
    ALLOWED_ORIGIN,
    MOCK_EMAIL,
    MOCK_PHONE,
    MOCK_USER_ID,
)
from tests.mocks.services import FakeClock, RecordingDispatcher

# ── Test-only login route ──────────────────────────────────────────────────


class _LoginRequest(BaseModel):
    user_id: str
    email: str | None = None
    phone: str | None = None


_login_router = APIRouter()


@_login_router.post("/test-login")
async def _test_login(body: _LoginRequest, request: Request, response: Response) -> dict:
    login_user(request, response, body.user_id, email=body.email, phone=body.phone)
    return {"user_id": body.user_id}


# ── Environment ────────────────────────────────────────────────────────────


@pytest.fixture()
def app_settings() -> dict:
    """Config overrides applied before the app is built; override per test class."""
    return {}


@pytest.fixture()
def _test_env(monkeypatch, tmp_path, app_settings):
    """
    Point the database at a temp file and pin the settings the tests rely
    on, regardless of the developer's .env.
    """
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setattr(config, "ENVIRONMENT", "development")
    monkeypatch.setattr(config, "ADMIN_USER_IDS", [ADMIN_USER_ID])
    monkeypatch.setattr(config, "CORS_ALLOWED_ORIGINS", [ALLOWED_ORIGIN])
    monkeypatch.setattr(config, "TWO_FACTOR_CHANNELS", ["email", "sms"])
    monkeypatch.setattr(config, "TRUST_PROXY_HEADERS", False)
    # Generous enough for multi-step flows; throttling tests tighten it.
    monkeypatch.setattr(config, "RATE_LIMIT_AUTH", "50/15 minutes")
    monkeypatch.setattr(config, "RATE_LIMIT_AUTH_SKIP_SUCCESSFUL", False)
    # Keep the background sweeper out of the way
    monkeypatch.setattr(config, "SWEEP_INTERVAL", 3600.0)

    for name, value in app_settings.items():
        monkeypatch.setattr(config, name, value)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


# ── App / HTTP ─────────────────────────────────────────────────────────────


@pytest.fixture()
def app(_test_env, clock, dispatcher):
    application = create_app(clock=clock, dispatcher=dispatcher)
    application.include_router(_login_router)
    return application


@pytest.fixture()
def client(app) -> TestClient:
    """
    TestClient running the full lifespan (DB init / shutdown).
    No session cookie until ``login`` is used.
    """
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc


@pytest.fixture()
def login(client):
    """Log a user in through the primary-login hook; the cookie sticks to ``client``."""

    def _login(user_id: str = MOCK_USER_ID, email: str | None = MOCK_EMAIL, phone: str | None = MOCK_PHONE):
        resp = client.post("/test-login", json={"user_id": user_id, "email": email, "phone": phone})
        assert resp.status_code == 200
        return resp

    return _login


@pytest.fixture()
def step_up(client, dispatcher):
    """Complete the email two-factor flow for the logged-in user."""

    def _step_up(channel: str = "email"):
        resp = client.post("/api/auth/two-factor/initiate", json={"channel": channel})
        assert resp.status_code == 200
        resp = client.post(
            "/api/auth/two-factor/verify",
            json={"channel": channel, "code": dispatcher.last_code(channel)},
        )
        assert resp.status_code == 200
        return resp

    return _step_up


# ── Component-level fixtures ───────────────────────────────────────────────


@pytest.fixture()
def sessions(clock) -> SessionStore:
    return SessionStore(idle_timeout=1800, clock=clock)


@pytest.fixture()
def directory() -> ContactDirectory:
    contacts = ContactDirectory()
    contacts.register(MOCK_USER_ID, email=MOCK_EMAIL, phone=MOCK_PHONE)
    return contacts


@pytest.fixture()
def two_factor(sessions, directory, dispatcher, clock) -> TwoFactorService:
    return TwoFactorService(
        sessions,
        directory,
        dispatcher,
        secret="test-secret",
        token_expiry=300,
        max_attempts=5,
        backup_code_count=10,
        clock=clock,
    )


@pytest.fixture()
async def database(monkeypatch, tmp_path):
    """Open the SQLite layer on the test's own event loop."""
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "unit.db"))
    await db.init_db()
    yield
    await db.close_db()
