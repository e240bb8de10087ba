"""
Global pytest fixtures.

Settings are read at import time, so the environment is pinned here before
anything from `gatekeeper` is imported. Tests never touch Postgres: the auth
service is rebuilt per test over the in-memory stores and injected through
FastAPI dependency overrides.
"""

import datetime as dt
import os

os.environ.setdefault("JWT_SECRET", "test-secret-0123456789abcdef0123456789abcdef")
os.environ.setdefault("AUTH_STORE_BACKEND", "memory")
os.environ.setdefault("SESSION_CLEANUP_INTERVAL_S", "0")
os.environ.setdefault("PASSWORD_HASH_ITERATIONS", "1000")

import pytest  # type: ignore[import-not-found]  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from gatekeeper.api.main import build_app  # noqa: E402
from gatekeeper.auth.depends import get_auth_service  # noqa: E402
from gatekeeper.auth.memory import (  # noqa: E402
    MemorySessionRepository,
    MemoryUserRepository,
)
from gatekeeper.auth.service import AuthService  # noqa: E402
from gatekeeper.auth.tokens import TokenIssuer  # noqa: E402

TEST_SECRET = os.environ["JWT_SECRET"]


@pytest.fixture()
def token_issuer() -> TokenIssuer:
    return TokenIssuer(
        secret=TEST_SECRET,
        access_ttl=dt.timedelta(minutes=60),
        refresh_ttl=dt.timedelta(days=7),
    )


@pytest.fixture()
def auth_service(token_issuer: TokenIssuer) -> AuthService:
    """Fresh service over empty in-memory stores (cheap password hashing)."""
    return AuthService(
        users=MemoryUserRepository(),
        sessions=MemorySessionRepository(),
        tokens=token_issuer,
        max_active_sessions=10,
        password_iterations=1000,
    )


@pytest.fixture()
def app(auth_service: AuthService) -> FastAPI:
    app = build_app()
    app.dependency_overrides[get_auth_service] = lambda: auth_service
    return app


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    """Sync test client (covers the HTTP surface)."""
    return TestClient(app)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Default AnyIO backend for async tests."""
    return "asyncio"
