from __future__ import annotations

from pydantic import BaseModel


class HealthCheck(BaseModel):
    ok: bool
    configured: bool = True
    detail: str | None = None


class HealthResponse(BaseModel):
    status: str
    store_backend: str
    db: HealthCheck
