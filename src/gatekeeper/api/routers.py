from fastapi import FastAPI

from gatekeeper.auth.api import router as auth_router
from gatekeeper.health.api import router as health_router
from gatekeeper.users.api import router as users_router


def configure_routers(app: FastAPI) -> FastAPI:
    app.include_router(auth_router)
    app.include_router(health_router)
    app.include_router(users_router)
    return app
