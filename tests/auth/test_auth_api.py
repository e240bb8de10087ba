from __future__ import annotations

import pytest  # type: ignore[import-not-found]
from fastapi.testclient import TestClient  # type: ignore[import-not-found]

from gatekeeper.core.settings import settings

COOKIE = settings.REFRESH_COOKIE_NAME
CREDENTIALS = {"email": "test@example.com", "password": "Password123"}


def _register(client: TestClient) -> None:
    r = client.post("/auth/register", json={**CREDENTIALS, "name": "Test User"})
    assert r.status_code == 201, r.text


def _login(client: TestClient, *, remember_me: bool = True, ua: str = "pytest-ua") -> str:
    r = client.post(
        "/auth/login",
        json={**CREDENTIALS, "remember_me": remember_me},
        headers={"User-Agent": ua},
    )
    assert r.status_code == 200, r.text
    return r.json()["access_token"]


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_register_returns_public_user(client: TestClient) -> None:
    r = client.post("/auth/register", json={**CREDENTIALS, "name": "Test User"})
    assert r.status_code == 201
    user = r.json()["user"]
    assert user["email"] == "test@example.com"
    assert user["role"] == "USER"
    assert "password_hash" not in user
    assert COOKIE not in r.cookies


def test_register_duplicate_is_conflict(client: TestClient) -> None:
    _register(client)
    r = client.post("/auth/register", json={**CREDENTIALS, "name": "Someone Else"})
    assert r.status_code == 409
    assert r.json()["exception"]["kind"] == "duplicate_email"


def test_register_validates_input(client: TestClient) -> None:
    r = client.post(
        "/auth/register",
        json={"email": "not-an-email", "name": "Test User", "password": "Password123"},
    )
    assert r.status_code == 400
    r = client.post(
        "/auth/register",
        json={"email": "a@example.com", "name": "Test User", "password": "123"},
    )
    assert r.status_code == 400
    assert r.json()["exception"]["message"].startswith("password")


def test_auth_me_unauthorized(client: TestClient) -> None:
    r = client.get("/auth/me")
    assert r.status_code == 401
    assert r.json()["exception"]["message"] == "Not authenticated"

    r = client.get("/auth/me", headers=_bearer("garbage"))
    assert r.status_code == 401


def test_login_with_remember_me_sets_refresh_cookie(client: TestClient) -> None:
    _register(client)
    r = client.post("/auth/login", json={**CREDENTIALS, "remember_me": True})
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "Login successful"
    assert "refresh_token" not in body
    assert r.cookies.get(COOKIE)

    set_cookie = r.headers["set-cookie"].lower()
    assert "httponly" in set_cookie
    assert "path=/" in set_cookie
    assert "samesite=lax" in set_cookie
    assert f"max-age={7 * 24 * 3600}" in set_cookie
    assert "; secure" not in set_cookie


def test_refresh_cookie_is_secure_in_production(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    _register(client)
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    r = client.post("/auth/login", json={**CREDENTIALS, "remember_me": True})
    assert r.status_code == 200
    set_cookie = r.headers["set-cookie"].lower()
    assert "; secure" in set_cookie
    assert "httponly" in set_cookie


def test_login_without_remember_me_sets_no_refresh_cookie(client: TestClient) -> None:
    _register(client)
    r = client.post("/auth/login", json={**CREDENTIALS, "remember_me": False})
    assert r.status_code == 200
    assert not r.cookies.get(COOKIE)


def test_login_failures_share_one_message(client: TestClient) -> None:
    _register(client)
    wrong = client.post(
        "/auth/login", json={"email": "test@example.com", "password": "nope-nope"}
    )
    unknown = client.post(
        "/auth/login", json={"email": "ghost@example.com", "password": "nope-nope"}
    )
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json()["exception"]["message"] == unknown.json()["exception"]["message"]


def test_me_returns_current_user(client: TestClient) -> None:
    _register(client)
    token = _login(client)
    r = client.get("/auth/me", headers=_bearer(token))
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "test@example.com"
    assert r.json()["user"]["last_login_at"] is not None


def test_refresh_uses_cookie_and_rotates(client: TestClient) -> None:
    _register(client)
    old_access = _login(client)
    old_refresh = client.cookies.get(COOKIE)

    r = client.post("/auth/refresh")
    assert r.status_code == 200, r.text
    assert r.json()["message"] == "Tokens refreshed successfully"
    new_access = r.json()["access_token"]
    assert new_access != old_access
    assert client.cookies.get(COOKIE) != old_refresh

    assert client.get("/auth/me", headers=_bearer(new_access)).status_code == 200
    assert client.get("/auth/me", headers=_bearer(old_access)).status_code == 401


def test_refresh_without_cookie_is_unauthorized(client: TestClient) -> None:
    r = client.post("/auth/refresh")
    assert r.status_code == 401
    assert r.json()["exception"]["kind"] == "invalid_refresh_token"


def test_replayed_refresh_cookie_revokes_everything(client: TestClient) -> None:
    _register(client)
    _login(client)
    stolen = client.cookies.get(COOKIE)
    assert client.post("/auth/refresh").status_code == 200

    client.cookies.clear()
    client.cookies.set(COOKIE, stolen)
    r = client.post("/auth/refresh")
    assert r.status_code == 401
    assert r.json()["exception"]["kind"] == "security_violation"


def test_logout_revokes_token_and_clears_cookie(client: TestClient) -> None:
    _register(client)
    token = _login(client)

    r = client.post("/auth/logout", headers=_bearer(token))
    assert r.status_code == 200
    assert r.json()["message"] == "Logged out successfully"
    assert not client.cookies.get(COOKIE)

    assert client.get("/auth/me", headers=_bearer(token)).status_code == 401
    assert client.post("/auth/logout", headers=_bearer(token)).status_code == 401


def test_distinct_devices_get_distinct_sessions(client: TestClient) -> None:
    _register(client)
    laptop = _login(client, ua="laptop-browser")
    phone = _login(client, ua="phone-browser")

    r = client.get("/users/me/sessions", headers=_bearer(phone))
    assert r.status_code == 200
    agents = {s["device_info"] for s in r.json()["items"]}
    assert agents == {"laptop-browser", "phone-browser"}

    # The shared client jar holds the phone cookie; drop it so only the laptop
    # session is logged out.
    client.cookies.clear()
    client.post("/auth/logout", headers=_bearer(laptop))
    assert client.get("/auth/me", headers=_bearer(phone)).status_code == 200
