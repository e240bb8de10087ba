"""
Common/base exceptions.

Feature-level exceptions in `<feature>/exceptions.py` subclass these. Every
service failure carries an `ErrorKind`; the API layer maps kinds to status
codes in one table (see `gatekeeper.api.exceptions`).
"""

from enum import StrEnum


class ErrorKind(StrEnum):
    INVALID_CREDENTIALS = "invalid_credentials"
    DUPLICATE_EMAIL = "duplicate_email"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    SECURITY_VIOLATION = "security_violation"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    INTERNAL = "internal"


class BaseServiceException(Exception):
    def __init__(self, kind: ErrorKind, message: str, details: str | None = None):
        self.kind = kind
        self.message = message
        self.details = details
        super().__init__(self.message)


class BaseCoreException(Exception):
    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)


class ConstraintViolation(BaseCoreException):
    """A store rejected a write because it would break a uniqueness rule."""
