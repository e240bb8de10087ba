from __future__ import annotations

import datetime as dt
import logging

from fastapi import FastAPI, Request  # type: ignore[import-not-found]
from fastapi.exceptions import RequestValidationError  # type: ignore[import-not-found]
from fastapi.responses import JSONResponse  # type: ignore[import-not-found]
from starlette import status  # type: ignore[import-not-found]

from gatekeeper.commons.exceptions import BaseServiceException, ErrorKind
from gatekeeper.commons.logging import logger

# The one place error kinds become HTTP status codes.
STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_REFRESH_TOKEN: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.SECURITY_VIOLATION: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.DUPLICATE_EMAIL: status.HTTP_409_CONFLICT,
    ErrorKind.BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

INTERNAL_ERROR_MESSAGE = "Internal server error"


def _envelope(
    request: Request, *, code: int, kind: ErrorKind, message: str
) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if code == 401 else None
    return JSONResponse(
        status_code=code,
        headers=headers,
        content={
            "exception": {
                "code": code,
                "kind": kind.value,
                "message": message,
                "timestamp": dt.datetime.now(dt.UTC).isoformat(),
                "path": request.url.path,
                "method": request.method,
            }
        },
    )


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = str(first.get("msg", "Invalid value"))
    return f"{field}: {msg}" if field else msg


def configure_global_exception_handlers(app: FastAPI) -> FastAPI:
    @app.exception_handler(BaseServiceException)
    async def service_exception_handler(
        request: Request, exc: BaseServiceException
    ) -> JSONResponse:
        code = STATUS_BY_KIND[exc.kind]
        if code >= 500:
            logger.error(
                "%s %s %s: %s (%s)",
                code,
                request.method,
                request.url.path,
                exc.message,
                exc.details,
                exc_info=exc,
            )
            return _envelope(
                request, code=code, kind=exc.kind, message=INTERNAL_ERROR_MESSAGE
            )
        level = (
            logging.WARNING if exc.kind == ErrorKind.SECURITY_VIOLATION else logging.DEBUG
        )
        logger.log(
            level,
            "%s %s %s: %s (%s)",
            code,
            request.method,
            request.url.path,
            exc.message,
            exc.details,
        )
        return _envelope(request, code=code, kind=exc.kind, message=exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        message = _first_validation_message(exc)
        logger.debug("400 %s %s: %s", request.method, request.url.path, message)
        return _envelope(
            request,
            code=status.HTTP_400_BAD_REQUEST,
            kind=ErrorKind.BAD_REQUEST,
            message=message,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "500 %s %s: unhandled %s",
            request.method,
            request.url.path,
            type(exc).__name__,
            exc_info=exc,
        )
        return _envelope(
            request,
            code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            kind=ErrorKind.INTERNAL,
            message=INTERNAL_ERROR_MESSAGE,
        )

    return app
