from __future__ import annotations

from fastapi import APIRouter, Response
from starlette import status

from gatekeeper.health import service
from gatekeeper.health.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(response: Response) -> HealthResponse:
    payload = HealthResponse(**(await service.get_health_payload()))
    if payload.status != "ok":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return payload
