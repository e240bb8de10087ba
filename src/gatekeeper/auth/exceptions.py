from __future__ import annotations

from gatekeeper.commons.exceptions import BaseServiceException, ErrorKind


class AuthServiceException(BaseServiceException):
    pass


# Same text for unknown email and wrong password (no account enumeration).
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
INVALID_REFRESH_TOKEN_MESSAGE = "Invalid refresh token"
NOT_AUTHENTICATED_MESSAGE = "Not authenticated"


def invalid_credentials() -> AuthServiceException:
    return AuthServiceException(
        ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE
    )


def invalid_refresh_token() -> AuthServiceException:
    return AuthServiceException(
        ErrorKind.INVALID_REFRESH_TOKEN, INVALID_REFRESH_TOKEN_MESSAGE
    )


def unauthenticated(details: str | None = None) -> AuthServiceException:
    return AuthServiceException(
        ErrorKind.UNAUTHENTICATED, NOT_AUTHENTICATED_MESSAGE, details
    )
