from __future__ import annotations

from pydantic import BaseModel  # type: ignore[import-not-found]

from gatekeeper.auth.models import UserRole
from gatekeeper.auth.schemas import SessionPublic, UserPublic


class UserListResponse(BaseModel):
    items: list[UserPublic]


class SessionListResponse(BaseModel):
    items: list[SessionPublic]


class UpdateRoleRequest(BaseModel):
    role: UserRole
