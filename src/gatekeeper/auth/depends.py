from __future__ import annotations

from collections.abc import Awaitable, Callable
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, Request  # type: ignore[import-not-found]

from gatekeeper.auth.exceptions import AuthServiceException
from gatekeeper.auth.models import User, UserRole
from gatekeeper.auth.service import AuthService, RequestIdentity
from gatekeeper.commons.exceptions import ErrorKind
from gatekeeper.core.settings import settings


@lru_cache
def get_auth_service() -> AuthService:
    return AuthService.create(settings)


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


async def current_identity(
    request: Request,
    svc: Annotated[AuthService, Depends(get_auth_service)],
    authorization: Annotated[str | None, Header()] = None,
) -> RequestIdentity:
    """
    Authenticate the request: signed, unexpired bearer token AND a live
    session row for it. The identity is also left on `request.state`.
    """
    identity = await svc.authenticate(bearer_token(authorization))
    request.state.identity = identity
    return identity


def require_roles(
    *roles: UserRole,
) -> Callable[..., Awaitable[User]]:
    allowed = frozenset(roles)

    async def _current_user_with_role(
        identity: Annotated[RequestIdentity, Depends(current_identity)],
        svc: Annotated[AuthService, Depends(get_auth_service)],
    ) -> User:
        user = await svc.get_user(identity.user_id)
        if user.role not in allowed:
            raise AuthServiceException(ErrorKind.FORBIDDEN, "Insufficient permissions")
        return user

    return _current_user_with_role
