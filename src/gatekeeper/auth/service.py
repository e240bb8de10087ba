from __future__ import annotations

import asyncio
import datetime as dt
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar
from uuid import UUID

from gatekeeper.auth.crypto import hash_password, verify_password
from gatekeeper.auth.exceptions import (
    AuthServiceException,
    invalid_credentials,
    invalid_refresh_token,
    unauthenticated,
)
from gatekeeper.auth.fingerprint import device_fingerprint
from gatekeeper.auth.memory import MemorySessionRepository, MemoryUserRepository
from gatekeeper.auth.models import AuthSession, OAuthProvider, User
from gatekeeper.auth.repository import (
    SessionRepository,
    SessionStore,
    UserRepository,
    UserStore,
)
from gatekeeper.auth.tokens import TokenIssuer
from gatekeeper.commons.exceptions import ConstraintViolation, ErrorKind
from gatekeeper.commons.logging import logger
from gatekeeper.core.settings import Settings

T = TypeVar("T")


@dataclass(frozen=True)
class LoginResult:
    user: User
    access_token: str
    # Only ever handed to the HTTP layer for the cookie; never serialized.
    refresh_token: str | None
    refresh_max_age: int


@dataclass(frozen=True)
class RequestIdentity:
    user_id: UUID
    email: str
    session_id: UUID


@dataclass
class AuthService:
    """
    Login, refresh and logout over per-device sessions.

    Session lifecycle: ACTIVE -> REVOKED (logout, eviction, token reuse) or
    ACTIVE -> EXPIRED (clock). Both end states are terminal.
    """

    users: UserStore
    sessions: SessionStore
    tokens: TokenIssuer
    max_active_sessions: int = 10
    operation_timeout_s: float = 5.0
    password_iterations: int = 210_000
    audit_retention: int = 0

    def __post_init__(self) -> None:
        # Verified against on unknown-email logins so both failure paths
        # cost one PBKDF2 run.
        self._dummy_hash = hash_password(
            "gatekeeper-timing-pad", iterations=self.password_iterations
        )

    @classmethod
    def create(cls, cfg: Settings) -> "AuthService":
        users: UserStore
        sessions: SessionStore
        if cfg.AUTH_STORE_BACKEND == "memory":
            users, sessions = MemoryUserRepository(), MemorySessionRepository()
        else:
            from gatekeeper.core.db import database_manager

            users = UserRepository(database_manager)
            sessions = SessionRepository(database_manager)
        return cls(
            users=users,
            sessions=sessions,
            tokens=TokenIssuer(
                secret=cfg.JWT_SECRET,
                algorithm=cfg.JWT_ALGORITHM,
                access_ttl=dt.timedelta(minutes=cfg.ACCESS_TOKEN_TTL_MINUTES),
                refresh_ttl=dt.timedelta(days=cfg.REFRESH_TOKEN_TTL_DAYS),
            ),
            max_active_sessions=cfg.AUTH_MAX_ACTIVE_SESSIONS,
            operation_timeout_s=cfg.AUTH_OPERATION_TIMEOUT_S,
            password_iterations=cfg.PASSWORD_HASH_ITERATIONS,
            audit_retention=cfg.SESSION_AUDIT_RETENTION,
        )

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.tokens.access_ttl.total_seconds())

    @property
    def refresh_ttl_seconds(self) -> int:
        return int(self.tokens.refresh_ttl.total_seconds())

    async def register(self, *, email: str, name: str, password: str) -> User:
        return await self._bounded(self._register(email, name, password))

    async def login(
        self,
        *,
        email: str,
        password: str,
        remember_me: bool = False,
        device_info: str | None = None,
        ip: str | None = None,
    ) -> LoginResult:
        return await self._bounded(
            self._login(email, password, remember_me, device_info, ip)
        )

    async def oauth_login(
        self,
        *,
        provider: OAuthProvider,
        external_id: str,
        email: str,
        display_name: str | None = None,
        remember_me: bool = False,
        device_info: str | None = None,
        ip: str | None = None,
    ) -> LoginResult:
        return await self._bounded(
            self._oauth_login(
                provider, external_id, email, display_name, remember_me, device_info, ip
            )
        )

    async def refresh(self, refresh_token: str | None) -> LoginResult:
        return await self._bounded(self._refresh(refresh_token))

    async def logout(
        self,
        *,
        user_id: UUID,
        access_token: str | None = None,
        refresh_token: str | None = None,
    ) -> None:
        await self._bounded(self._logout(user_id, access_token, refresh_token))

    async def authenticate(self, access_token: str | None) -> RequestIdentity:
        return await self._bounded(self._authenticate(access_token))

    async def get_user(self, user_id: UUID) -> User:
        user = await self._bounded(self.users.get_by_id(user_id))
        if user is None:
            raise AuthServiceException(ErrorKind.NOT_FOUND, "User not found")
        return user

    async def list_sessions(self, user_id: UUID) -> list[AuthSession]:
        return await self._bounded(self.sessions.list_active(user_id))

    async def revoke_session(self, *, user_id: UUID, session_id: UUID) -> None:
        revoked = await self._bounded(self.sessions.revoke_by_id(user_id, session_id))
        if not revoked:
            raise AuthServiceException(ErrorKind.NOT_FOUND, "Session not found")
        logger.info("SESSION_REVOKED: %s (user %s)", session_id, user_id)

    async def purge_expired_sessions(self) -> int:
        """Delete dead sessions and retired refresh digests past the refresh TTL."""
        removed = await self.sessions.purge_expired_or_revoked(
            retain_revoked_per_user=self.audit_retention
        )
        if removed:
            logger.info("SESSIONS_PURGED: %d", removed)
        cutoff = dt.datetime.now(dt.UTC) - self.tokens.refresh_ttl
        retired = await self.sessions.purge_retired_tokens(cutoff)
        if retired:
            logger.info("RETIRED_TOKENS_PURGED: %d", retired)
        return removed

    async def _bounded(self, op: Awaitable[T]) -> T:
        try:
            async with asyncio.timeout(self.operation_timeout_s):
                return await op
        except TimeoutError as exc:
            raise AuthServiceException(
                ErrorKind.INTERNAL, "Authentication backend timed out"
            ) from exc

    async def _register(self, email: str, name: str, password: str) -> User:
        logger.debug("Registration attempt: %s", email)
        if await self.users.get_by_email(email) is not None:
            logger.warning("REGISTRATION_FAILED: email exists - %s", email)
            raise AuthServiceException(
                ErrorKind.DUPLICATE_EMAIL, "User with this email already exists"
            )
        pw_hash = await asyncio.to_thread(
            hash_password, password, iterations=self.password_iterations
        )
        try:
            user = await self.users.insert_user(
                email=email, name=name, password_hash=pw_hash
            )
        except ConstraintViolation as exc:
            # Lost a race with a concurrent registration of the same email.
            raise AuthServiceException(
                ErrorKind.DUPLICATE_EMAIL, "User with this email already exists"
            ) from exc
        logger.info("USER_REGISTERED: %s (ID: %s)", user.email, user.id)
        return user

    async def _login(
        self,
        email: str,
        password: str,
        remember_me: bool,
        device_info: str | None,
        ip: str | None,
    ) -> LoginResult:
        user = await self.users.get_by_email(email)
        if user is None:
            await asyncio.to_thread(verify_password, password, self._dummy_hash)
            logger.warning("LOGIN_FAILED: user not found - %s", email)
            raise invalid_credentials()

        ok = await asyncio.to_thread(verify_password, password, user.password_hash)
        if not ok:
            logger.warning("LOGIN_FAILED: invalid password - %s", email)
            raise invalid_credentials()

        result = await self._open_session(user, remember_me, device_info, ip)
        logger.info("USER_LOGGED_IN: %s (ID: %s)", user.email, user.id)
        return result

    async def _oauth_login(
        self,
        provider: OAuthProvider,
        external_id: str,
        email: str,
        display_name: str | None,
        remember_me: bool,
        device_info: str | None,
        ip: str | None,
    ) -> LoginResult:
        user = await self.users.get_by_external_id(provider, external_id)
        if user is None:
            user = await self.users.get_by_email(email)
            if user is not None:
                await self.users.link_external_id(user.id, provider, external_id)
                logger.info("OAUTH_LINKED: %s id linked to %s", provider, user.email)
        if user is None:
            user = await self.users.insert_user(
                email=email,
                name=display_name or email.split("@")[0],
                password_hash=None,
            )
            await self.users.link_external_id(user.id, provider, external_id)
            logger.info("USER_REGISTERED: %s via %s (ID: %s)", user.email, provider, user.id)

        result = await self._open_session(user, remember_me, device_info, ip)
        logger.info("USER_LOGGED_IN: %s via %s (ID: %s)", user.email, provider, user.id)
        return result

    async def _open_session(
        self,
        user: User,
        remember_me: bool,
        device_info: str | None,
        ip: str | None,
    ) -> LoginResult:
        fingerprint = device_fingerprint(device_info, ip)
        pair = self.tokens.issue_token_pair(user_id=user.id, email=user.email)
        refresh_token = pair.refresh_token if remember_me else None
        # A remembered session lives as long as its refresh token; otherwise
        # the stored row expires together with the access token.
        ttl = self.refresh_ttl_seconds if remember_me else self.access_ttl_seconds

        # Second pass covers a concurrent login that created this device's
        # row between our lookup and our insert.
        for attempt in range(2):
            existing = await self.sessions.find_by_device_fingerprint(
                user.id, fingerprint
            )
            if existing is not None and await self.sessions.update_session(
                session_id=existing.id,
                access_token=pair.access_token,
                refresh_token=refresh_token,
                ttl_seconds=ttl,
            ):
                break

            if await self.sessions.count_active(user.id) >= self.max_active_sessions:
                evicted = await self.sessions.evict_oldest(
                    user.id, self.max_active_sessions - 1
                )
                logger.info("SESSIONS_EVICTED: %d (user %s)", evicted, user.id)
            try:
                await self.sessions.create_session(
                    user_id=user.id,
                    access_token=pair.access_token,
                    refresh_token=refresh_token,
                    ttl_seconds=ttl,
                    device_info=device_info,
                    ip_address=ip,
                    fingerprint=fingerprint,
                )
                break
            except ConstraintViolation:
                if attempt:
                    raise

        await self.users.touch_last_login(user.id)
        return LoginResult(
            user=user,
            access_token=pair.access_token,
            refresh_token=refresh_token,
            refresh_max_age=self.refresh_ttl_seconds,
        )

    async def _refresh(self, refresh_token: str | None) -> LoginResult:
        logger.debug("Token refresh attempt")
        if not refresh_token:
            raise invalid_refresh_token()
        try:
            self.tokens.decode(refresh_token, expected_type="refresh")
        except ValueError as exc:
            logger.warning("REFRESH_TOKEN_FAILED: %s", exc)
            raise invalid_refresh_token() from exc

        record = await self.sessions.find_valid_refresh_token(refresh_token)
        if record is None:
            owner = await self.sessions.find_reused_refresh_token(refresh_token)
            if owner is not None:
                revoked = await self.sessions.revoke_all(owner)
                logger.error(
                    "REFRESH_TOKEN_REUSE: user %s, %d sessions revoked", owner, revoked
                )
                raise AuthServiceException(
                    ErrorKind.SECURITY_VIOLATION,
                    "Refresh token reuse detected; all sessions were revoked",
                )
            logger.warning("REFRESH_TOKEN_FAILED: not found or expired")
            raise invalid_refresh_token()

        user = await self.users.get_by_id(record.user_id)
        if user is None:
            raise invalid_refresh_token()

        pair = self.tokens.issue_token_pair(user_id=user.id, email=user.email)
        # Found by its refresh token, so the session keeps one.
        updated = await self.sessions.update_session(
            session_id=record.id,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            ttl_seconds=self.refresh_ttl_seconds,
            retire_previous=True,
        )
        if not updated:
            # Revoked between lookup and rotation; revoke wins.
            raise invalid_refresh_token()

        logger.debug("Tokens refreshed: %s", user.email)
        return LoginResult(
            user=user,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            refresh_max_age=self.refresh_ttl_seconds,
        )

    async def _logout(
        self, user_id: UUID, access_token: str | None, refresh_token: str | None
    ) -> None:
        if access_token:
            await self.sessions.revoke(access_token)
            if refresh_token:
                # The refresh token may sit on a different row under a race.
                await self.sessions.revoke_by_refresh(user_id, refresh_token)
            logger.info("USER_LOGGED_OUT: %s", user_id)
            return
        revoked = await self.sessions.revoke_all(user_id)
        logger.info("USER_LOGGED_OUT_EVERYWHERE: %s (%d sessions)", user_id, revoked)

    async def _authenticate(self, access_token: str | None) -> RequestIdentity:
        if not access_token:
            raise unauthenticated("missing bearer token")
        try:
            claims = self.tokens.decode(access_token, expected_type="access")
        except ValueError as exc:
            raise unauthenticated(str(exc)) from exc

        # Signature alone is not enough: logout and reuse detection revoke
        # sessions server-side before the token's own expiry.
        record = await self.sessions.find_valid_access_token(access_token)
        if record is None or record.user_id != claims.user_id:
            logger.debug("Token revoked or expired for user %s", claims.user_id)
            raise unauthenticated("token revoked or expired")

        await self.sessions.touch_last_used(record.id)
        return RequestIdentity(
            user_id=claims.user_id, email=claims.email, session_id=record.id
        )
