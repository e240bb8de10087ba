from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field  # type: ignore[import-not-found]

from gatekeeper.auth.models import UserRole


class UserPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: EmailStr
    name: str
    role: UserRole
    created_at: datetime
    last_login_at: datetime | None = None


class RegisterRequest(BaseModel):
    email: EmailStr = Field(max_length=255)
    name: str = Field(min_length=2, max_length=50, pattern=r"^[^\W\d_]+(?:[\s'-][^\W\d_]+)*$")
    password: str = Field(min_length=6, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=256)
    remember_me: bool = False


class RegisterResponse(BaseModel):
    message: str
    user: UserPublic


class AuthResponse(BaseModel):
    message: str
    access_token: str
    user: UserPublic


class MeResponse(BaseModel):
    user: UserPublic


class MessageResponse(BaseModel):
    message: str


class SessionPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    device_info: str | None = None
    device_fingerprint: str
    ip_address: str | None = None
    created_at: datetime
    last_used: datetime
    expires_at: datetime
    revoked: bool
