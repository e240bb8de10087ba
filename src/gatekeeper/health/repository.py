from __future__ import annotations

from gatekeeper.core.settings import settings


def get_store_backend() -> str:
    return settings.AUTH_STORE_BACKEND


async def check_db() -> tuple[bool, str | None]:
    if get_store_backend() != "postgres":
        return False, "not_configured"
    from gatekeeper.core.db import database_manager

    return await database_manager.ping()
