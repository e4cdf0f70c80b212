"""Errors raised by the scheduling engine and their HTTP mapping.

Each error class carries its status code and a stable ``error`` slug; the
handlers registered on the app render them as ``ErrorResponse`` bodies.

Usage:
    from scheduling.errors import ConflictError, NotFoundError

    # In the engine:
    if conflicts:
        raise ConflictError(detail="Slot is no longer available", conflicting_booking_ids=conflicts)

    # Register handlers in main.py:
    from scheduling.errors import register_exception_handlers
    register_exception_handlers(app)
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """JSON body returned for every scheduling error."""

    error: str
    detail: str | None = None
    error_code: str | None = None
    context: dict[str, Any] | None = None


class APIError(Exception):
    """Base class for scheduling errors."""

    status_code: int = 500
    error: str = "internal_error"
    detail: str = "An unexpected error occurred"

    def __init__(
        self,
        detail: str | None = None,
        error_code: str | None = None,
        **context: Any,
    ) -> None:
        self.detail = detail or self.__class__.detail
        self.error_code = error_code
        self.context = context if context else None
        super().__init__(self.detail)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.error,
            detail=self.detail,
            error_code=self.error_code,
            context=self.context,
        )


class NotFoundError(APIError):
    """Unknown id or token (404)."""

    status_code = 404
    error = "not_found"
    detail = "Resource not found"


class ValidationError(APIError):
    """Malformed rule, time range, duration or vote input (422).

    Raised before any state change.
    """

    status_code = 422
    error = "validation_error"
    detail = "Invalid input"


class ConflictError(APIError):
    """Interval overlaps a confirmed booking (409).

    The ids of the offending bookings travel in ``context["conflicting_booking_ids"]``.
    """

    status_code = 409
    error = "conflict"
    detail = "Requested time conflicts with an existing booking"

    @property
    def conflicting_booking_ids(self) -> list[str]:
        if not self.context:
            return []
        return list(self.context.get("conflicting_booking_ids", []))


class InvalidTransitionError(APIError):
    """State change not allowed by the entity's transition table (409)."""

    status_code = 409
    error = "invalid_transition"
    detail = "Illegal state transition"


class ExpiredTokenError(APIError):
    """Token presented after its expiry (410)."""

    status_code = 410
    error = "token_expired"
    detail = "Token has expired"


class LimitExceededError(APIError):
    """Plan-level cap reached (403). Passed through unchanged by the core."""

    status_code = 403
    error = "limit_exceeded"
    detail = "Plan limit exceeded"


class ServiceUnavailableError(APIError):
    """Scheduling service not initialized yet (503)."""

    status_code = 503
    error = "service_unavailable"
    detail = "Service temporarily unavailable"


class DatabaseError(APIError):
    """Store backend failure (500)."""

    status_code = 500
    error = "database_error"
    detail = "Database operation failed"


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle scheduling errors."""
    logger.warning(
        "API error: %s (status=%d, path=%s)",
        exc.detail,
        exc.status_code,
        request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(exclude_none=True),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception("Unhandled exception: %s (path=%s)", exc, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="internal_error",
            detail="An unexpected error occurred",
        ).model_dump(exclude_none=True),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
