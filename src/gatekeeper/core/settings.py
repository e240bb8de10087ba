from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator  # type: ignore[import-not-found]
from pydantic_settings import (  # type: ignore[import-not-found]
    BaseSettings,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    """
    App settings.

    Loads from environment variables and an optional local `.env` file.
    `.env` is gitignored.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    API_TITLE: str = "Gatekeeper API"
    API_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"  # development|production
    LOG_LEVEL: str = "INFO"

    # Database (Docker Compose)
    GATEKEEPER_DB_HOST: str = "localhost"
    GATEKEEPER_DB_PORT: int = 5432
    GATEKEEPER_DB_NAME: str = "gatekeeper"
    GATEKEEPER_DB_USER: str = "gatekeeper"
    GATEKEEPER_DB_PASSWORD: str = ""

    # postgres: SQLAlchemy repositories; memory: in-process stores (dev only,
    # state is lost on restart and not shared between workers).
    AUTH_STORE_BACKEND: Literal["postgres", "memory"] = "postgres"

    # Token signing. No default: the app must not boot without a secret.
    JWT_SECRET: str = Field(min_length=32)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_TTL_MINUTES: int = 60
    REFRESH_TOKEN_TTL_DAYS: int = 7

    # Sessions
    AUTH_MAX_ACTIVE_SESSIONS: int = Field(default=10, ge=1)
    AUTH_OPERATION_TIMEOUT_S: float = 5.0
    PASSWORD_HASH_ITERATIONS: int = 210_000
    SESSION_CLEANUP_INTERVAL_S: float = 3600.0  # 0 disables the sweep
    SESSION_AUDIT_RETENTION: int = 0  # revoked sessions kept per user on purge

    # Refresh-token cookie (HTTP-only)
    REFRESH_COOKIE_NAME: str = "refreshToken"
    AUTH_COOKIE_SAMESITE: str = "lax"  # lax|strict|none

    # CORS (browser UI calling the API with cookies)
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    @field_validator("JWT_SECRET")
    @classmethod
    def _secret_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("JWT_SECRET must not be blank")
        return v

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"


settings = Settings()
