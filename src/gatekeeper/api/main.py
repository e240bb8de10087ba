from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware  # type: ignore[import-not-found]

from gatekeeper.api.exceptions import configure_global_exception_handlers
from gatekeeper.api.routers import configure_routers
from gatekeeper.auth.cleanup import SessionCleanupWorker
from gatekeeper.auth.depends import get_auth_service
from gatekeeper.core.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    svc = app.dependency_overrides.get(get_auth_service, get_auth_service)()
    worker = SessionCleanupWorker(svc, interval_s=settings.SESSION_CLEANUP_INTERVAL_S)
    await worker.start()
    try:
        yield
    finally:
        await worker.stop()
        if settings.AUTH_STORE_BACKEND == "postgres":
            from gatekeeper.core.db import database_manager

            await database_manager.shutdown()


def build_app() -> FastAPI:
    # Fail fast: a missing/short JWT_SECRET stops the process here.
    get_auth_service()

    app = FastAPI(title=settings.API_TITLE, version=settings.API_VERSION, lifespan=lifespan)
    # CORS: be forgiving about localhost vs 127.0.0.1, since devs commonly use either.
    raw_origins = [o.strip() for o in str(settings.CORS_ORIGINS).split(",") if o.strip()]
    origins: list[str] = []
    for o in raw_origins:
        origins.append(o)
        if o.startswith("http://localhost:"):
            origins.append(o.replace("http://localhost:", "http://127.0.0.1:", 1))
        elif o.startswith("http://127.0.0.1:"):
            origins.append(o.replace("http://127.0.0.1:", "http://localhost:", 1))
    # De-dupe while preserving order.
    seen: set[str] = set()
    origins = [o for o in origins if not (o in seen or seen.add(o))]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    configure_routers(app)
    configure_global_exception_handlers(app)
    return app


app = build_app()
