from sqlalchemy import false
from sqlmodel import select

from wheel_tracker.api import auth as auth_api
from wheel_tracker.models.user import RefreshToken, User

DEFAULT_PASSWORD = "wheel-pass-123"

SIGNUP = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "email": "ada@example.com",
    "username": "ada",
    "password": DEFAULT_PASSWORD,
}


async def test_signup_creates_user(client, db_session):
    resp = await client.post("/api/auth/signup", json=SIGNUP)
    assert resp.status_code == 201
    body = resp.json()
    assert body["message"] == "User created"

    result = await db_session.execute(select(User).where(User.username == "ada"))
    user = result.scalar_one()
    assert str(user.id) == body["userId"]
    assert user.password_hash != DEFAULT_PASSWORD
    assert not user.is_admin


async def test_signup_rejects_taken_username_without_creating_record(client, db_session):
    assert (await client.post("/api/auth/signup", json=SIGNUP)).status_code == 201

    resp = await client.post("/api/auth/signup", json={**SIGNUP, "email": "other@example.com"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Username or email already taken"

    resp = await client.post("/api/auth/signup", json={**SIGNUP, "username": "ada2"})
    assert resp.status_code == 400

    result = await db_session.execute(select(User))
    assert len(result.scalars().all()) == 1


async def test_signup_missing_fields_is_400(client):
    resp = await client.post("/api/auth/signup", json={"username": "ada", "password": "x"})
    assert resp.status_code == 400
    assert "detail" in resp.json()
    assert resp.json()["errors"]


async def test_signup_rejects_weak_password(client, db_session):
    resp = await client.post("/api/auth/signup", json={**SIGNUP, "password": "x"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Password must be at least 8 characters"

    result = await db_session.execute(select(User))
    assert result.scalars().all() == []


async def test_signup_duplicate_caught_by_unique_constraint_is_400(client, monkeypatch):
    assert (await client.post("/api/auth/signup", json=SIGNUP)).status_code == 201

    # A concurrent signup sees no existing row and only fails on insert
    monkeypatch.setattr(auth_api, "or_", lambda *clauses: false())

    resp = await client.post("/api/auth/signup", json={**SIGNUP, "email": "other@example.com"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Username or email already taken"


async def test_login_returns_token_and_sets_cookies(client):
    await client.post("/api/auth/signup", json=SIGNUP)

    resp = await client.post("/api/auth/login", json={"username": "ada", "password": DEFAULT_PASSWORD})
    assert resp.status_code == 200
    body = resp.json()
    assert body["tokenType"] == "bearer"
    assert body["expiresIn"] > 0
    assert "access_token" in resp.cookies
    assert "refresh_token" in resp.cookies


async def test_login_bad_password_is_401(client):
    await client.post("/api/auth/signup", json=SIGNUP)

    resp = await client.post("/api/auth/login", json={"username": "ada", "password": "wrong-password"})
    assert resp.status_code == 401


async def test_me_requires_auth(client):
    resp = await client.get("/api/auth/me")
    assert resp.status_code == 401


async def test_me_with_bearer_token(client, auth_headers):
    resp = await client.get("/api/auth/me", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["username"] == "alice"
    assert "passwordHash" not in resp.json()


async def test_me_rejects_garbage_token(client):
    resp = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


async def test_refresh_rotates_token(client, db_session):
    await client.post("/api/auth/signup", json=SIGNUP)
    resp = await client.post("/api/auth/login", json={"username": "ada", "password": DEFAULT_PASSWORD})
    old_refresh = resp.cookies["refresh_token"]

    client.cookies.clear()
    client.cookies.set("refresh_token", old_refresh)
    resp = await client.post("/api/auth/refresh")
    assert resp.status_code == 200
    assert resp.json()["accessToken"]

    result = await db_session.execute(select(RefreshToken).where(RefreshToken.token == old_refresh))
    assert result.scalar_one().revoked

    # A revoked token cannot be replayed
    client.cookies.clear()
    client.cookies.set("refresh_token", old_refresh)
    resp = await client.post("/api/auth/refresh")
    assert resp.status_code == 401


async def test_refresh_without_cookie_is_401(client):
    resp = await client.post("/api/auth/refresh")
    assert resp.status_code == 401


async def test_logout_revokes_refresh_tokens(client, auth_headers, db_session):
    resp = await client.post("/api/auth/logout", headers=auth_headers)
    assert resp.status_code == 200

    result = await db_session.execute(select(RefreshToken))
    tokens = result.scalars().all()
    assert tokens
    assert all(t.revoked for t in tokens)
