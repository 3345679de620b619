"""
Shared fixtures: a throwaway SQLite database, an HTTP client bound to the
app, and helpers for signing up users and creating portfolios and trades.
"""

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="wheel-tracker-tests-")

# Settings are read at import time
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret-key"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ENVIRONMENT"] = "development"
os.environ["DEBUG"] = "false"
os.environ["SEED_ROUTE_ENABLED"] = "true"

import httpx  # noqa: E402
import pytest  # noqa: E402

from wheel_tracker.core.database import close_db, drop_db, get_session_factory, init_db  # noqa: E402
from wheel_tracker.core.security import limiter  # noqa: E402
from wheel_tracker.main import app  # noqa: E402

from .helpers import future_date  # noqa: E402

limiter.enabled = False

DEFAULT_PASSWORD = "wheel-pass-123"


@pytest.fixture
async def client():
    await drop_db()
    await init_db()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await close_db()


@pytest.fixture
async def db_session(client):
    async with get_session_factory()() as session:
        yield session


@pytest.fixture
def make_user(client):
    """Sign up and log in; returns Bearer headers. The cookie jar is left empty."""
    async def _make(username: str = "alice", password: str = DEFAULT_PASSWORD, email: str | None = None):
        resp = await client.post("/api/auth/signup", json={
            "firstName": username.title(),
            "lastName": "Tester",
            "email": email or f"{username}@example.com",
            "username": username,
            "password": password,
        })
        assert resp.status_code == 201, resp.text

        resp = await client.post("/api/auth/login", json={"username": username, "password": password})
        assert resp.status_code == 200, resp.text
        client.cookies.clear()
        return {"Authorization": f"Bearer {resp.json()['accessToken']}"}

    return _make


@pytest.fixture
async def auth_headers(make_user):
    return await make_user()


@pytest.fixture
def make_portfolio(client):
    async def _make(headers, **overrides):
        body = {"name": "Wheel", "startingCapital": 10000}
        body.update(overrides)
        resp = await client.post("/api/portfolios", json=body, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _make


@pytest.fixture
def make_trade(client):
    async def _make(headers, portfolio_id, **overrides):
        body = {
            "portfolioId": portfolio_id,
            "ticker": "aapl",
            "strikePrice": 150,
            "expirationDate": future_date(),
            "type": "CashSecuredPut",
            "contracts": 2,
            "contractPrice": 1.5,
        }
        body.update(overrides)
        resp = await client.post("/api/trades", json=body, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _make


@pytest.fixture
async def portfolio(auth_headers, make_portfolio):
    return await make_portfolio(auth_headers)
