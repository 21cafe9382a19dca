"""Exception handlers producing the organizer's `{error, message, detail}` envelope."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...services.errors import (
    CompletionError,
    EntityExistsError,
    EntityNotFoundError,
    OrganizerError,
    RevertError,
    RoutingFailure,
)

logger = logging.getLogger(__name__)

# Error codes for plain HTTPExceptions raised by routes or the router itself.
HTTP_ERROR_CODES: Dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: "validation_error",
    status.HTTP_404_NOT_FOUND: "not_found",
}

# Most specific first.
ORGANIZER_STATUS: Tuple[Tuple[type, int, str], ...] = (
    (EntityNotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (EntityExistsError, status.HTTP_409_CONFLICT, "conflict"),
    (RevertError, status.HTTP_404_NOT_FOUND, "revert_failed"),
    (RoutingFailure, status.HTTP_502_BAD_GATEWAY, "routing_failed"),
    (CompletionError, status.HTTP_502_BAD_GATEWAY, "completion_failed"),
)


def _envelope(
    status_code: int, error: str, message: str, detail: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "detail": detail or None},
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _envelope(
        status.HTTP_400_BAD_REQUEST,
        "validation_error",
        "Invalid request payload",
        {"errors": exc.errors()},
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code = HTTP_ERROR_CODES.get(exc.status_code, "http_error")
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else code
    return _envelope(exc.status_code, code, message)


async def organizer_exception_handler(request: Request, exc: OrganizerError) -> JSONResponse:
    for error_type, status_code, code in ORGANIZER_STATUS:
        if isinstance(exc, error_type):
            logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
            return _envelope(status_code, code, exc.message, exc.details)
    logger.error(f"Unhandled organizer error on {request.url.path}: {exc.message}")
    return _envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "organizer_error", exc.message)


async def internal_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return _envelope(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", "Internal server error"
    )


def register_error_handlers(app: FastAPI) -> None:
    """Attach the organizer's exception handlers to the FastAPI application."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(OrganizerError, organizer_exception_handler)
    app.add_exception_handler(Exception, internal_exception_handler)


__all__ = [
    "register_error_handlers",
    "validation_exception_handler",
    "http_exception_handler",
    "organizer_exception_handler",
    "internal_exception_handler",
]
