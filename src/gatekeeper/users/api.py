from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends  # type: ignore[import-not-found]

from gatekeeper.auth.depends import current_identity, get_auth_service, require_roles
from gatekeeper.auth.models import User, UserRole
from gatekeeper.auth.schemas import MessageResponse, SessionPublic, UserPublic
from gatekeeper.auth.service import AuthService, RequestIdentity
from gatekeeper.users.schemas import (
    SessionListResponse,
    UpdateRoleRequest,
    UserListResponse,
)
from gatekeeper.users.service import UsersService, get_users_service

router = APIRouter(prefix="/users", tags=["users"])

admin_user = require_roles(UserRole.ADMIN, UserRole.SUPER_ADMIN)
any_user = require_roles(UserRole.USER, UserRole.ADMIN, UserRole.SUPER_ADMIN)


@router.get("", response_model=UserListResponse)
async def list_users(
    _: Annotated[User, Depends(admin_user)],
    svc: Annotated[UsersService, Depends(get_users_service)],
) -> UserListResponse:
    users = await svc.list_users()
    return UserListResponse(items=[UserPublic.model_validate(u) for u in users])


@router.get("/me", response_model=UserPublic)
async def me(user: Annotated[User, Depends(any_user)]) -> UserPublic:
    return UserPublic.model_validate(user)


@router.get("/me/sessions", response_model=SessionListResponse)
async def my_sessions(
    identity: Annotated[RequestIdentity, Depends(current_identity)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> SessionListResponse:
    sessions = await auth.list_sessions(identity.user_id)
    return SessionListResponse(
        items=[SessionPublic.model_validate(s) for s in sessions]
    )


@router.delete("/me/sessions/{session_id}", response_model=MessageResponse)
async def revoke_my_session(
    session_id: UUID,
    identity: Annotated[RequestIdentity, Depends(current_identity)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> MessageResponse:
    await auth.revoke_session(user_id=identity.user_id, session_id=session_id)
    return MessageResponse(message="Session revoked")


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: UUID,
    requester: Annotated[User, Depends(any_user)],
    svc: Annotated[UsersService, Depends(get_users_service)],
) -> MessageResponse:
    await svc.delete_user(target_id=user_id, requester=requester)
    return MessageResponse(message="User deleted successfully")


@router.patch("/{user_id}/role", response_model=UserPublic)
async def update_role(
    user_id: UUID,
    req: UpdateRoleRequest,
    requester: Annotated[User, Depends(admin_user)],
    svc: Annotated[UsersService, Depends(get_users_service)],
) -> UserPublic:
    user = await svc.update_role(target_id=user_id, requester=requester, role=req.role)
    return UserPublic.model_validate(user)


@router.post("/{user_id}/logout", response_model=MessageResponse)
async def force_logout(
    user_id: UUID,
    requester: Annotated[User, Depends(admin_user)],
    svc: Annotated[UsersService, Depends(get_users_service)],
) -> MessageResponse:
    await svc.force_logout(target_id=user_id, requester=requester)
    return MessageResponse(message="User logged out from all sessions")
