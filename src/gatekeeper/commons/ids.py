from __future__ import annotations

from uuid import UUID

from uuid6 import uuid7  # type: ignore[import-not-found]


def new_id() -> UUID:
    """UUIDv7 for users and sessions (time-ordered, so index friendly)."""
    return uuid7()
