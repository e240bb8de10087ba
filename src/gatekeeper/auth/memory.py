"""
In-memory user and session stores.

Same contracts as the SQLAlchemy repositories, for local development
(`AUTH_STORE_BACKEND=memory`) and tests. Each operation runs under one
`asyncio.Lock`, which gives it the same all-or-nothing behaviour the SQL
store gets from a single conditional statement. State is process-local and
lost on restart.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import itertools
from uuid import UUID

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


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


_PROVIDER_ATTRS = {
    OAuthProvider.GOOGLE: "google_id",
    OAuthProvider.FACEBOOK: "facebook_id",
}


class MemoryUserRepository:
    def __init__(self) -> None:
        self.users: dict[UUID, User] = {}
        self._lock = asyncio.Lock()

    async def get_by_email(self, email: str) -> User | None:
        needle = email.strip().lower()
        async with self._lock:
            return next((u for u in self.users.values() if u.email == needle), None)

    async def get_by_id(self, user_id: UUID) -> User | None:
        async with self._lock:
            return self.users.get(user_id)

    async def get_by_external_id(
        self, provider: OAuthProvider, external_id: str
    ) -> User | None:
        attr = _PROVIDER_ATTRS[provider]
        async with self._lock:
            return next(
                (u for u in self.users.values() if getattr(u, attr) == external_id),
                None,
            )

    async def insert_user(
        self,
        *,
        email: str,
        name: str,
        password_hash: str | None,
        role: UserRole = UserRole.USER,
    ) -> User:
        email = email.strip().lower()
        async with self._lock:
            if any(u.email == email for u in self.users.values()):
                raise ConstraintViolation("User already exists", email)
            user = User(
                id=new_id(),
                email=email,
                name=name.strip(),
                password_hash=password_hash,
                google_id=None,
                facebook_id=None,
                role=role,
                created_at=_utcnow(),
                last_login_at=None,
            )
            self.users[user.id] = user
            return user

    async def link_external_id(
        self, user_id: UUID, provider: OAuthProvider, external_id: str
    ) -> None:
        attr = _PROVIDER_ATTRS[provider]
        async with self._lock:
            if any(getattr(u, attr) == external_id for u in self.users.values()):
                raise ConstraintViolation("External id already linked", external_id)
            user = self.users.get(user_id)
            if user is not None and getattr(user, attr) is None:
                setattr(user, attr, external_id)

    async def update_role(self, user_id: UUID, role: UserRole) -> User | None:
        async with self._lock:
            user = self.users.get(user_id)
            if user is not None:
                user.role = role
            return user

    async def delete_user(self, user_id: UUID) -> int:
        async with self._lock:
            return 1 if self.users.pop(user_id, None) is not None else 0

    async def list_users(self) -> list[User]:
        async with self._lock:
            return sorted(self.users.values(), key=lambda u: u.created_at)

    async def touch_last_login(self, user_id: UUID) -> None:
        async with self._lock:
            user = self.users.get(user_id)
            if user is not None:
                user.last_login_at = _utcnow()


class MemorySessionRepository:
    def __init__(self) -> None:
        self.sessions: dict[UUID, AuthSession] = {}
        self.retired: dict[str, RetiredRefreshToken] = {}
        self._lock = asyncio.Lock()
        # Tie-breaker for sessions touched within the same clock tick.
        self._ticks = itertools.count()
        self._order: dict[UUID, int] = {}

    def _is_active(self, s: AuthSession, now: dt.datetime) -> bool:
        return not s.revoked and s.expires_at > now

    def _recency(self, s: AuthSession) -> tuple[dt.datetime, int]:
        return (s.last_used, self._order.get(s.id, 0))

    def _touch(self, s: AuthSession, now: dt.datetime) -> None:
        s.last_used = now
        self._order[s.id] = next(self._ticks)

    def _revoke_where(self, predicate) -> int:  # type: ignore[no-untyped-def]
        now = _utcnow()
        count = 0
        for s in self.sessions.values():
            if not s.revoked and predicate(s):
                s.revoked = True
                s.revoked_at = now
                count += 1
        return count

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
        async with self._lock:
            if any(
                s.user_id == user_id
                and s.device_fingerprint == fingerprint
                and not s.revoked
                for s in self.sessions.values()
            ):
                raise ConstraintViolation(
                    "A live session already exists for this device", fingerprint
                )
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
                revoked_at=None,
            )
            self.sessions[record.id] = record
            self._touch(record, now)
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
        async with self._lock:
            s = self.sessions.get(session_id)
            if s is None or s.revoked:
                return False
            old_hash = s.refresh_token_hash
            if retire_previous and old_hash and old_hash != new_refresh_hash:
                self.retired[old_hash] = RetiredRefreshToken(
                    token_hash=old_hash,
                    session_id=s.id,
                    user_id=s.user_id,
                    retired_at=now,
                )
            s.access_token_hash = hash_token(access_token)
            s.refresh_token_hash = new_refresh_hash
            s.expires_at = now + dt.timedelta(seconds=ttl_seconds)
            self._touch(s, now)
            return True

    async def find_by_device_fingerprint(
        self, user_id: UUID, fingerprint: str
    ) -> AuthSession | None:
        async with self._lock:
            matches = [
                s
                for s in self.sessions.values()
                if s.user_id == user_id
                and s.device_fingerprint == fingerprint
                and not s.revoked
            ]
            return max(matches, key=self._recency, default=None)

    async def count_active(self, user_id: UUID) -> int:
        now = _utcnow()
        async with self._lock:
            return sum(
                1
                for s in self.sessions.values()
                if s.user_id == user_id and self._is_active(s, now)
            )

    async def evict_oldest(self, user_id: UUID, keep_count: int) -> int:
        now = _utcnow()
        async with self._lock:
            active = sorted(
                (
                    s
                    for s in self.sessions.values()
                    if s.user_id == user_id and self._is_active(s, now)
                ),
                key=self._recency,
                reverse=True,
            )
            stale = {s.id for s in active[max(keep_count, 0) :]}
            return self._revoke_where(lambda s: s.id in stale)

    async def find_valid_access_token(self, token: str) -> AuthSession | None:
        if not token:
            return None
        token_hash = hash_token(token)
        now = _utcnow()
        async with self._lock:
            return next(
                (
                    s
                    for s in self.sessions.values()
                    if s.access_token_hash == token_hash and self._is_active(s, now)
                ),
                None,
            )

    async def find_valid_refresh_token(self, token: str) -> AuthSession | None:
        if not token:
            return None
        token_hash = hash_token(token)
        now = _utcnow()
        async with self._lock:
            return next(
                (
                    s
                    for s in self.sessions.values()
                    if s.refresh_token_hash == token_hash and self._is_active(s, now)
                ),
                None,
            )

    async def find_reused_refresh_token(self, token: str) -> UUID | None:
        token_hash = hash_token(token)
        async with self._lock:
            for s in self.sessions.values():
                if s.refresh_token_hash == token_hash and s.revoked:
                    return s.user_id
            retired = self.retired.get(token_hash)
            return retired.user_id if retired is not None else None

    async def revoke(self, access_token: str) -> int:
        token_hash = hash_token(access_token)
        async with self._lock:
            return self._revoke_where(lambda s: s.access_token_hash == token_hash)

    async def revoke_by_refresh(self, user_id: UUID, refresh_token: str) -> int:
        token_hash = hash_token(refresh_token)
        async with self._lock:
            return self._revoke_where(
                lambda s: s.user_id == user_id and s.refresh_token_hash == token_hash
            )

    async def revoke_all(self, user_id: UUID) -> int:
        async with self._lock:
            return self._revoke_where(lambda s: s.user_id == user_id)

    async def revoke_by_id(self, user_id: UUID, session_id: UUID) -> int:
        async with self._lock:
            return self._revoke_where(
                lambda s: s.id == session_id and s.user_id == user_id
            )

    async def touch_last_used(self, session_id: UUID) -> None:
        async with self._lock:
            s = self.sessions.get(session_id)
            if s is not None and not s.revoked:
                self._touch(s, _utcnow())

    async def list_active(self, user_id: UUID) -> list[AuthSession]:
        now = _utcnow()
        async with self._lock:
            return sorted(
                (
                    s
                    for s in self.sessions.values()
                    if s.user_id == user_id and self._is_active(s, now)
                ),
                key=self._recency,
                reverse=True,
            )

    async def purge_expired_or_revoked(self, *, retain_revoked_per_user: int = 0) -> int:
        now = _utcnow()
        async with self._lock:
            keep: set[UUID] = set()
            if retain_revoked_per_user > 0:
                by_user: dict[UUID, list[AuthSession]] = {}
                for s in self.sessions.values():
                    if s.revoked:
                        by_user.setdefault(s.user_id, []).append(s)
                for revoked in by_user.values():
                    revoked.sort(key=self._recency, reverse=True)
                    keep.update(s.id for s in revoked[:retain_revoked_per_user])
            doomed = [
                sid
                for sid, s in self.sessions.items()
                if (s.revoked or s.expires_at <= now) and sid not in keep
            ]
            for sid in doomed:
                del self.sessions[sid]
                self._order.pop(sid, None)
            gone = set(doomed)
            for token_hash in [
                h for h, r in self.retired.items() if r.session_id in gone
            ]:
                del self.retired[token_hash]
            return len(doomed)


    async def purge_retired_tokens(self, older_than: dt.datetime) -> int:
        async with self._lock:
            stale = [h for h, r in self.retired.items() if r.retired_at <= older_than]
            for token_hash in stale:
                del self.retired[token_hash]
            return len(stale)
