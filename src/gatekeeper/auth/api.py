from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request  # type: ignore[import-not-found]
from fastapi.responses import JSONResponse  # type: ignore[import-not-found]
from starlette import status  # type: ignore[import-not-found]

from gatekeeper.auth.depends import (
    bearer_token,
    client_ip,
    current_identity,
    get_auth_service,
)
from gatekeeper.auth.schemas import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    UserPublic,
)
from gatekeeper.auth.service import AuthService, LoginResult, RequestIdentity
from gatekeeper.core.settings import settings

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_refresh_cookie(resp: JSONResponse, token: str, max_age: int) -> None:
    resp.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite=str(settings.AUTH_COOKIE_SAMESITE),
        path="/",
        max_age=max_age,
    )


def _clear_refresh_cookie(resp: JSONResponse) -> None:
    resp.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite=str(settings.AUTH_COOKIE_SAMESITE),
    )


def _session_response(result: LoginResult, message: str) -> JSONResponse:
    data = AuthResponse(
        message=message,
        access_token=result.access_token,
        user=UserPublic.model_validate(result.user),
    ).model_dump(mode="json")
    resp = JSONResponse(status_code=status.HTTP_200_OK, content=data)
    if result.refresh_token:
        _set_refresh_cookie(resp, result.refresh_token, result.refresh_max_age)
    else:
        # Drop any stale cookie from an earlier remembered session.
        _clear_refresh_cookie(resp)
    return resp


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    req: RegisterRequest,
    svc: Annotated[AuthService, Depends(get_auth_service)],
) -> RegisterResponse:
    user = await svc.register(email=str(req.email), name=req.name, password=req.password)
    return RegisterResponse(
        message="User registered successfully", user=UserPublic.model_validate(user)
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    req: LoginRequest,
    request: Request,
    svc: Annotated[AuthService, Depends(get_auth_service)],
    user_agent: Annotated[str | None, Header()] = None,
) -> JSONResponse:
    result = await svc.login(
        email=str(req.email),
        password=req.password,
        remember_me=req.remember_me,
        device_info=user_agent,
        ip=client_ip(request),
    )
    return _session_response(result, "Login successful")


@router.post("/refresh", response_model=AuthResponse)
async def refresh(
    request: Request,
    svc: Annotated[AuthService, Depends(get_auth_service)],
) -> JSONResponse:
    result = await svc.refresh(request.cookies.get(settings.REFRESH_COOKIE_NAME))
    return _session_response(result, "Tokens refreshed successfully")


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    identity: Annotated[RequestIdentity, Depends(current_identity)],
    svc: Annotated[AuthService, Depends(get_auth_service)],
    authorization: Annotated[str | None, Header()] = None,
) -> JSONResponse:
    await svc.logout(
        user_id=identity.user_id,
        access_token=bearer_token(authorization),
        refresh_token=request.cookies.get(settings.REFRESH_COOKIE_NAME),
    )
    resp = JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"message": "Logged out successfully"},
    )
    _clear_refresh_cookie(resp)
    return resp


@router.get("/me", response_model=MeResponse)
async def me(
    identity: Annotated[RequestIdentity, Depends(current_identity)],
    svc: Annotated[AuthService, Depends(get_auth_service)],
) -> MeResponse:
    user = await svc.get_user(identity.user_id)
    return MeResponse(user=UserPublic.model_validate(user))
