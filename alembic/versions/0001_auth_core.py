"""auth core: users, device sessions, retired refresh tokens

Revision ID: 0001_auth_core
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa  # type: ignore[import-not-found]

from alembic import op

revision = "0001_auth_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False, server_default=""),
        # NULL for accounts created through an OAuth provider.
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("google_id", sa.Text(), nullable=True),
        sa.Column("facebook_id", sa.Text(), nullable=True),
        sa.Column(
            "role", sa.String(length=16), nullable=False, server_default="USER"
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "role IN ('USER', 'ADMIN', 'SUPER_ADMIN')", name="user_role"
        ),
    )
    op.create_index("users_email_unique", "users", ["email"], unique=True)
    op.create_index("users_google_id_unique", "users", ["google_id"], unique=True)
    op.create_index(
        "users_facebook_id_unique", "users", ["facebook_id"], unique=True
    )

    op.create_table(
        "auth_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        # SHA-256 digests; the raw tokens only live on the client.
        sa.Column("access_token_hash", sa.Text(), nullable=False),
        sa.Column("refresh_token_hash", sa.Text(), nullable=True),
        sa.Column("device_fingerprint", sa.String(length=64), nullable=False),
        sa.Column("device_info", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("last_used", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "revoked", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "auth_sessions_access_token_hash_unique",
        "auth_sessions",
        ["access_token_hash"],
        unique=True,
    )
    op.create_index(
        "auth_sessions_refresh_token_hash_unique",
        "auth_sessions",
        ["refresh_token_hash"],
        unique=True,
    )
    op.create_index(
        "auth_sessions_user_device_live_unique",
        "auth_sessions",
        ["user_id", "device_fingerprint"],
        unique=True,
        postgresql_where=sa.text("NOT revoked"),
    )
    op.create_index(
        "auth_sessions_user_last_used_idx",
        "auth_sessions",
        ["user_id", "last_used"],
        unique=False,
    )
    op.create_index(
        "auth_sessions_purge_idx",
        "auth_sessions",
        ["expires_at", "revoked"],
        unique=False,
    )

    op.create_table(
        "retired_refresh_tokens",
        sa.Column("token_hash", sa.Text(), primary_key=True, nullable=False),
        sa.Column(
            "session_id",
            sa.Uuid(),
            sa.ForeignKey("auth_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("retired_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "retired_refresh_tokens_session_idx",
        "retired_refresh_tokens",
        ["session_id"],
        unique=False,
    )
    op.create_index(
        "retired_refresh_tokens_retired_at_idx",
        "retired_refresh_tokens",
        ["retired_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(
        "retired_refresh_tokens_retired_at_idx", table_name="retired_refresh_tokens"
    )
    op.drop_index(
        "retired_refresh_tokens_session_idx", table_name="retired_refresh_tokens"
    )
    op.drop_table("retired_refresh_tokens")

    op.drop_index("auth_sessions_purge_idx", table_name="auth_sessions")
    op.drop_index("auth_sessions_user_last_used_idx", table_name="auth_sessions")
    op.drop_index("auth_sessions_user_device_live_unique", table_name="auth_sessions")
    op.drop_index(
        "auth_sessions_refresh_token_hash_unique", table_name="auth_sessions"
    )
    op.drop_index(
        "auth_sessions_access_token_hash_unique", table_name="auth_sessions"
    )
    op.drop_table("auth_sessions")

    op.drop_index("users_facebook_id_unique", table_name="users")
    op.drop_index("users_google_id_unique", table_name="users")
    op.drop_index("users_email_unique", table_name="users")
    op.drop_table("users")
