from __future__ import annotations

from gatekeeper.health import repository


async def get_health_payload() -> dict:
    backend = repository.get_store_backend()
    db_ok, db_detail = await repository.check_db()

    # The in-memory backend has no database to depend on.
    uses_db = backend == "postgres"
    status = "ok" if (db_ok or not uses_db) else "error"

    return {
        "status": status,
        "store_backend": backend,
        "db": {
            "ok": db_ok,
            "configured": uses_db,
            "detail": db_detail,
        },
    }
