from __future__ import annotations

import datetime as dt
from enum import StrEnum
from uuid import UUID

import sqlalchemy as sa  # type: ignore[import-not-found]
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column  # type: ignore[import-not-found]


class Base(DeclarativeBase):
    pass


class UserRole(StrEnum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class User(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(sa.Uuid(), primary_key=True)
    email: Mapped[str] = mapped_column(sa.Text(), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(sa.Text(), nullable=False, default="")
    # Absent for accounts created through an OAuth provider.
    password_hash: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    google_id: Mapped[str | None] = mapped_column(sa.Text(), nullable=True, unique=True)
    facebook_id: Mapped[str | None] = mapped_column(
        sa.Text(), nullable=True, unique=True
    )
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role", native_enum=False, length=16),
        nullable=False,
        default=UserRole.USER,
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    last_login_at: Mapped[dt.datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )


class AuthSession(Base):
    """One device session of one user. Tokens are stored as SHA-256 digests."""

    __tablename__ = "auth_sessions"
    __table_args__ = (
        # At most one live session per (user, device).
        sa.Index(
            "auth_sessions_user_device_live_unique",
            "user_id",
            "device_fingerprint",
            unique=True,
            postgresql_where=sa.text("NOT revoked"),
            sqlite_where=sa.text("revoked = 0"),
        ),
        sa.Index("auth_sessions_user_last_used_idx", "user_id", "last_used"),
    )

    id: Mapped[UUID] = mapped_column(sa.Uuid(), primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    access_token_hash: Mapped[str] = mapped_column(
        sa.Text(), nullable=False, unique=True
    )
    refresh_token_hash: Mapped[str | None] = mapped_column(
        sa.Text(), nullable=True, unique=True
    )
    device_fingerprint: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    device_info: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    last_used: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    expires_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    revoked: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=False)
    revoked_at: Mapped[dt.datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )


class RetiredRefreshToken(Base):
    """A refresh token rotated out of a session; presenting it again is reuse."""

    __tablename__ = "retired_refresh_tokens"
    __table_args__ = (
        sa.Index("retired_refresh_tokens_session_idx", "session_id"),
        # Age-bounded purge.
        sa.Index("retired_refresh_tokens_retired_at_idx", "retired_at"),
    )

    token_hash: Mapped[str] = mapped_column(sa.Text(), primary_key=True)
    session_id: Mapped[UUID] = mapped_column(
        sa.Uuid(),
        sa.ForeignKey("auth_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(sa.Uuid(), nullable=False)
    retired_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )


class OAuthProvider(StrEnum):
    GOOGLE = "google"
    FACEBOOK = "facebook"
