from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Literal
from uuid import UUID, uuid4

import jwt  # type: ignore[import-not-found]

TokenType = Literal["access", "refresh"]

MIN_SECRET_LENGTH = 32


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class TokenClaims:
    user_id: UUID
    email: str
    token_type: TokenType
    expires_at: dt.datetime


class TokenIssuer:
    """
    Mints and verifies HS256-signed access/refresh tokens.

    Built once at startup from settings and shared read-only by all requests.
    Construction fails without a usable secret, so the app cannot come up
    issuing guessable tokens.
    """

    def __init__(
        self,
        *,
        secret: str,
        access_ttl: dt.timedelta,
        refresh_ttl: dt.timedelta,
        algorithm: str = "HS256",
    ) -> None:
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ValueError(
                f"token signing secret must be at least {MIN_SECRET_LENGTH} characters"
            )
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def issue_token_pair(
        self, *, user_id: UUID, email: str, now: dt.datetime | None = None
    ) -> TokenPair:
        now = now or dt.datetime.now(dt.UTC)
        return TokenPair(
            access_token=self._encode(user_id, email, "access", now, self.access_ttl),
            refresh_token=self._encode(
                user_id, email, "refresh", now, self.refresh_ttl
            ),
        )

    def decode(self, token: str, *, expected_type: TokenType) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "iat"]},
            )
        except jwt.PyJWTError as exc:
            raise ValueError("Invalid token.") from exc

        if payload.get("type") != expected_type:
            raise ValueError("Invalid token type.")
        try:
            user_id = UUID(str(payload["userId"]))
            email = str(payload["email"])
        except (KeyError, ValueError) as exc:
            raise ValueError("Invalid token subject.") from exc

        return TokenClaims(
            user_id=user_id,
            email=email,
            token_type=expected_type,
            expires_at=dt.datetime.fromtimestamp(int(payload["exp"]), dt.UTC),
        )

    def _encode(
        self,
        user_id: UUID,
        email: str,
        token_type: TokenType,
        now: dt.datetime,
        ttl: dt.timedelta,
    ) -> str:
        payload = {
            "userId": str(user_id),
            "email": email,
            "type": token_type,
            # Two tokens minted in the same second must still differ.
            "jti": uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)
