"""
User and session stores.

`UserStore` and `SessionStore` are the contracts the auth service depends on.
The SQLAlchemy implementations below are the production ones; see
`gatekeeper.auth.memory` for the in-process variants.

Every mutating session operation is a single conditional statement (or one
short transaction holding a row lock), so concurrent logins, refreshes and
logouts never rely on a read-modify-write in application code. A revoked row
is never un-revoked: updates only ever match `revoked = false`.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

import sqlalchemy as sa  # type: ignore[import-not-found]
from sqlalchemy.exc import IntegrityError  # type: ignore[import-not-found]

from gatekeeper.auth.crypto import hash_token
from gatekeeper.auth.models import (
    AuthSession,
    OAuthProvider,
    RetiredRefreshToken,
    User,
    UserRole,
)
from gatekeeper.commons.exceptions import ConstraintViolation
from gatekeeper.commons.ids import new_id
from gatekeeper.commons.logging import logger
from gatekeeper.core.db import DatabaseManager


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class UserStore(Protocol):
    async def get_by_email(self, email: str) -> User | None: ...

    async def get_by_id(self, user_id: UUID) -> User | None: ...

    async def get_by_external_id(
        self, provider: OAuthProvider, external_id: str
    ) -> User | None: ...

    async def insert_user(
        self,
        *,
        email: str,
        name: str,
        password_hash: str | None,
        role: UserRole = UserRole.USER,
    ) -> User: ...

    async def link_external_id(
        self, user_id: UUID, provider: OAuthProvider, external_id: str
    ) -> None: ...

    async def update_role(self, user_id: UUID, role: UserRole) -> User | None: ...

    async def delete_user(self, user_id: UUID) -> int: ...

    async def list_users(self) -> list[User]: ...

    async def touch_last_login(self, user_id: UUID) -> None: ...


class SessionStore(Protocol):
    async def create_session(
        self,
        *,
        user_id: UUID,
        access_token: str,
        refresh_token: str | None,
        ttl_seconds: int,
        device_info: str | None,
        ip_address: str | None,
        fingerprint: str,
    ) -> AuthSession: ...

    async def update_session(
        self,
        *,
        session_id: UUID,
        access_token: str,
        refresh_token: str | None,
        ttl_seconds: int,
        retire_previous: bool = False,
    ) -> bool: ...

    async def find_by_device_fingerprint(
        self, user_id: UUID, fingerprint: str
    ) -> AuthSession | None: ...

    async def count_active(self, user_id: UUID) -> int: ...

    async def evict_oldest(self, user_id: UUID, keep_count: int) -> int: ...

    async def find_valid_access_token(self, token: str) -> AuthSession | None: ...

    async def find_valid_refresh_token(self, token: str) -> AuthSession | None: ...

    async def find_reused_refresh_token(self, token: str) -> UUID | None: ...

    async def revoke(self, access_token: str) -> int: ...

    async def revoke_by_refresh(self, user_id: UUID, refresh_token: str) -> int: ...

    async def revoke_all(self, user_id: UUID) -> int: ...

    async def revoke_by_id(self, user_id: UUID, session_id: UUID) -> int: ...

    async def touch_last_used(self, session_id: UUID) -> None: ...

    async def list_active(self, user_id: UUID) -> list[AuthSession]: ...

    async def purge_expired_or_revoked(
        self, *, retain_revoked_per_user: int = 0
    ) -> int: ...

    async def purge_retired_tokens(self, older_than: dt.datetime) -> int: ...


_PROVIDER_COLUMNS = {
    OAuthProvider.GOOGLE: User.google_id,
    OAuthProvider.FACEBOOK: User.facebook_id,
}


@dataclass(frozen=True)
class UserRepository:
    db: DatabaseManager

    async def get_by_email(self, email: str) -> User | None:
        stmt = sa.select(User).where(sa.func.lower(User.email) == email.lower())
        async with self.db.transaction() as session:
            res = await session.execute(stmt)
            return res.scalar_one_or_none()

    async def get_by_id(self, user_id: UUID) -> User | None:
        async with self.db.transaction() as session:
            return await session.get(User, user_id)

    async def get_by_external_id(
        self, provider: OAuthProvider, external_id: str
    ) -> User | None:
        stmt = sa.select(User).where(_PROVIDER_COLUMNS[provider] == external_id)
        async with self.db.transaction() as session:
            res = await session.execute(stmt)
            return res.scalar_one_or_none()

    async def insert_user(
        self,
        *,
        email: str,
        name: str,
        password_hash: str | None,
        role: UserRole = UserRole.USER,
    ) -> User:
        user = User(
            id=new_id(),
            email=email.strip().lower(),
            name=name.strip(),
            password_hash=password_hash,
            role=role,
            created_at=_utcnow(),
        )
        try:
            async with self.db.transaction() as session:
                session.add(user)
                await session.flush()
        except IntegrityError as exc:
            raise ConstraintViolation("User already exists", str(exc.orig)) from exc
        return user

    async def link_external_id(
        self, user_id: UUID, provider: OAuthProvider, external_id: str
    ) -> None:
        column = _PROVIDER_COLUMNS[provider]
        stmt = (
            sa.update(User)
            .where(User.id == user_id)
            .where(column.is_(None))
            .values({column.key: external_id})
        )
        try:
            async with self.db.transaction() as session:
                await session.execute(stmt)
        except IntegrityError as exc:
            raise ConstraintViolation(
                "External id already linked", str(exc.orig)
            ) from exc

    async def update_role(self, user_id: UUID, role: UserRole) -> User | None:
        stmt = (
            sa.update(User)
            .where(User.id == user_id)
            .values(role=role)
            .returning(User)
        )
        async with self.db.transaction() as session:
            res = await session.execute(stmt)
            return res.scalar_one_or_none()

    async def delete_user(self, user_id: UUID) -> int:
        # auth_sessions rows go with it (ON DELETE CASCADE).
        stmt = sa.delete(User).where(User.id == user_id)
        async with self.db.transaction() as session:
            res = await session.execute(stmt)
            return int(res.rowcount or 0)

    async def list_users(self) -> list[User]:
        stmt = sa.select(User).order_by(User.created_at.asc())
        async with self.db.transaction() as session:
            res = await session.execute(stmt)
            return list(res.scalars().all())

    async def touch_last_login(self, user_id: UUID) -> None:
        stmt = (
            sa.update(User).where(User.id == user_id).values(last_login_at=_utcnow())
        )
        async with self.db.transaction() as session:
            await session.execute(stmt)


def _active(now: dt.datetime):  # type: ignore[no-untyped-def]
    return sa.and_(AuthSession.revoked.is_(False), AuthSession.expires_at > now)


def revoke_statement(*criteria, now: dt.datetime):  # type: ignore[no-untyped-def]
    """Conditional revoke; already-revoked rows are not matched (idempotent)."""
    return (
        sa.update(AuthSession)
        .where(*criteria)
        .where(AuthSession.revoked.is_(False))
        .values(revoked=True, revoked_at=now)
        .execution_options(synchronize_session=False)
    )


def evict_statement(user_id: UUID, keep_count: int, now: dt.datetime):  # type: ignore[no-untyped-def]
    """Revoke every active session past the `keep_count` most recently used."""
    stale = (
        sa.select(AuthSession.id)
        .where(AuthSession.user_id == user_id)
        .where(_active(now))
        .order_by(AuthSession.last_used.desc(), AuthSession.id.desc())
        .offset(keep_count)
    )
    return revoke_statement(AuthSession.id.in_(stale), now=now)


def purge_statement(now: dt.datetime, retain_revoked_per_user: int = 0):  # type: ignore[no-untyped-def]
    """
    Delete expired or revoked sessions in one server-side statement.

    The predicate is evaluated by the database row by row, so a session that
    was refreshed (expiry pushed forward) while the sweep ran is not deleted.
    """
    stmt = sa.delete(AuthSession).where(
        sa.or_(AuthSession.expires_at <= now, AuthSession.revoked.is_(True))
    )
    if retain_revoked_per_user > 0:
        ranked = (
            sa.select(
                AuthSession.id,
                sa.func.row_number()
                .over(
                    partition_by=AuthSession.user_id,
                    order_by=AuthSession.last_used.desc(),
                )
                .label("rn"),
            )
            .where(AuthSession.revoked.is_(True))
            .subquery()
        )
        keep = sa.select(ranked.c.id).where(ranked.c.rn <= retain_revoked_per_user)
        stmt = stmt.where(AuthSession.id.not_in(keep))
    return stmt.execution_options(synchronize_session=False)


def retired_purge_statement(older_than: dt.datetime):  # type: ignore[no-untyped-def]
    """
    Drop rotated-out refresh digests retired at or before `older_than`.

    Callers pass `now - refresh TTL`: a token retired that long ago has an
    expired signature and is rejected before any reuse lookup.
    """
    return (
        sa.delete(RetiredRefreshToken)
        .where(RetiredRefreshToken.retired_at <= older_than)
        .execution_options(synchronize_session=False)
    )


@dataclass(frozen=True)
class SessionRepository:
    db: DatabaseManager

    async def create_session(
        self,
        *,
        user_id: UUID,
        access_token: str,
        refresh_token: str | None,
        ttl_seconds: int,
        device_info: str | None,
        ip_address: str | None,
        fingerprint: str,
    ) -> AuthSession:
        now = _utcnow()
        record = AuthSession(
            id=new_id(),
            user_id=user_id,
            access_token_hash=hash_token(access_token),
            refresh_token_hash=hash_token(refresh_token) if refresh_token else None,
            device_fingerprint=fingerprint,
            device_info=device_info,
            ip_address=ip_address,
            created_at=now,
            last_used=now,
            expires_at=now + dt.timedelta(seconds=ttl_seconds),
            revoked=False,
        )
        try:
            async with self.db.transaction() as session:
                session.add(record)
                await session.flush()
        except IntegrityError as exc:
            raise ConstraintViolation(
                "A live session already exists for this device", str(exc.orig)
            ) from exc
        return record

    async def update_session(
        self,
        *,
        session_id: UUID,
        access_token: str,
        refresh_token: str | None,
        ttl_seconds: int,
        retire_previous: bool = False,
    ) -> bool:
        now = _utcnow()
        new_refresh_hash = hash_token(refresh_token) if refresh_token else None
        async with self.db.transaction() as session:
            # Row lock: a concurrent revoke either lands first (we see
            # revoked and bail out) or waits for this rotation to commit.
            current = (
                await session.execute(
                    sa.select(AuthSession.user_id, AuthSession.refresh_token_hash)
                    .where(AuthSession.id == session_id)
                    .where(AuthSession.revoked.is_(False))
                    .with_for_update()
                )
            ).one_or_none()
            if current is None:
                return False
            await session.execute(
                sa.update(AuthSession)
                .where(AuthSession.id == session_id)
                .where(AuthSession.revoked.is_(False))
                .values(
                    access_token_hash=hash_token(access_token),
                    refresh_token_hash=new_refresh_hash,
                    last_used=now,
                    expires_at=now + dt.timedelta(seconds=ttl_seconds),
                )
                .execution_options(synchronize_session=False)
            )
            old_hash = current.refresh_token_hash
            # Only rotation retires; a re-login on a shared device slot just
            # replaces the token, which then fails as an unknown one.
            if retire_previous and old_hash and old_hash != new_refresh_hash:
                session.add(
                    RetiredRefreshToken(
                        token_hash=old_hash,
                        session_id=session_id,
                        user_id=current.user_id,
                        retired_at=now,
                    )
                )
        return True

    async def find_by_device_fingerprint(
        self, user_id: UUID, fingerprint: str
    ) -> AuthSession | None:
        stmt = (
            sa.select(AuthSession)
            .where(AuthSession.user_id == user_id)
            .where(AuthSession.device_fingerprint == fingerprint)
            .where(AuthSession.revoked.is_(False))
            .order_by(AuthSession.last_used.desc())
            .limit(1)
        )
        async with self.db.transaction() as session:
            res = await session.execute(stmt)
            return res.scalar_one_or_none()

    async def count_active(self, user_id: UUID) -> int:
        stmt = (
            sa.select(sa.func.count())
            .select_from(AuthSession)
            .where(AuthSession.user_id == user_id)
            .where(_active(_utcnow()))
        )
        async with self.db.transaction() as session:
            res = await session.execute(stmt)
            return int(res.scalar_one())

    async def evict_oldest(self, user_id: UUID, keep_count: int) -> int:
        async with self.db.transaction() as session:
            res = await session.execute(
                evict_statement(user_id, max(keep_count, 0), _utcnow())
            )
            return int(res.rowcount or 0)

    async def find_valid_access_token(self, token: str) -> AuthSession | None:
        if not token:
            return None
        stmt = (
            sa.select(AuthSession)
            .where(AuthSession.access_token_hash == hash_token(token))
            .where(_active(_utcnow()))
        )
        try:
            async with self.db.transaction() as session:
                res = await session.execute(stmt)
                return res.scalar_one_or_none()
        except Exception:
            # Authentication fails closed instead of crashing the request.
            logger.exception("Access token lookup failed")
            return None

    async def find_valid_refresh_token(self, token: str) -> AuthSession | None:
        if not token:
            return None
        stmt = (
            sa.select(AuthSession)
            .where(AuthSession.refresh_token_hash == hash_token(token))
            .where(_active(_utcnow()))
        )
        async with self.db.transaction() as session:
            res = await session.execute(stmt)
            return res.scalar_one_or_none()

    async def find_reused_refresh_token(self, token: str) -> UUID | None:
        token_hash = hash_token(token)
        async with self.db.transaction() as session:
            owner = (
                await session.execute(
                    sa.select(AuthSession.user_id)
                    .where(AuthSession.refresh_token_hash == token_hash)
                    .where(AuthSession.revoked.is_(True))
                    .limit(1)
                )
            ).scalar_one_or_none()
            if owner is not None:
                return owner
            return (
                await session.execute(
                    sa.select(RetiredRefreshToken.user_id).where(
                        RetiredRefreshToken.token_hash == token_hash
                    )
                )
            ).scalar_one_or_none()

    async def revoke(self, access_token: str) -> int:
        return await self._revoke(
            AuthSession.access_token_hash == hash_token(access_token)
        )

    async def revoke_by_refresh(self, user_id: UUID, refresh_token: str) -> int:
        return await self._revoke(
            AuthSession.refresh_token_hash == hash_token(refresh_token),
            AuthSession.user_id == user_id,
        )

    async def revoke_all(self, user_id: UUID) -> int:
        return await self._revoke(AuthSession.user_id == user_id)

    async def revoke_by_id(self, user_id: UUID, session_id: UUID) -> int:
        return await self._revoke(
            AuthSession.id == session_id, AuthSession.user_id == user_id
        )

    async def touch_last_used(self, session_id: UUID) -> None:
        stmt = (
            sa.update(AuthSession)
            .where(AuthSession.id == session_id)
            .where(AuthSession.revoked.is_(False))
            .values(last_used=_utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self.db.transaction() as session:
            await session.execute(stmt)

    async def list_active(self, user_id: UUID) -> list[AuthSession]:
        stmt = (
            sa.select(AuthSession)
            .where(AuthSession.user_id == user_id)
            .where(_active(_utcnow()))
            .order_by(AuthSession.last_used.desc())
        )
        async with self.db.transaction() as session:
            res = await session.execute(stmt)
            return list(res.scalars().all())

    async def purge_expired_or_revoked(self, *, retain_revoked_per_user: int = 0) -> int:
        async with self.db.transaction() as session:
            res = await session.execute(
                purge_statement(_utcnow(), retain_revoked_per_user)
            )
            return int(res.rowcount or 0)

    async def purge_retired_tokens(self, older_than: dt.datetime) -> int:
        async with self.db.transaction() as session:
            res = await session.execute(retired_purge_statement(older_than))
            return int(res.rowcount or 0)

    async def _revoke(self, *criteria) -> int:  # type: ignore[no-untyped-def]
        async with self.db.transaction() as session:
            res = await session.execute(revoke_statement(*criteria, now=_utcnow()))
            return int(res.rowcount or 0)
