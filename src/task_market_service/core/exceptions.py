"""Service error taxonomy and exception handlers for consistent error responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler

__all__ = [
    "ConflictError",
    "ExternalServiceError",
    "NotFoundError",
    "PaymentRequiredError",
    "ServiceError",
    "StateError",
    "ValidationError",
    "register_exception_handlers",
]


class ServiceError(Exception):
    """Base error carrying a machine-readable code, message and HTTP status."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}


class ValidationError(ServiceError):
    """Malformed input, disallowed content, missing capability."""

    def __init__(self, error: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error, message, 400, details)


class NotFoundError(ServiceError):
    """Referenced task, bid or profile does not exist."""

    def __init__(self, error: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error, message, 404, details)


class StateError(ServiceError):
    """
    Operation not allowed in the current task state or for the acting user.

    Role violations use status 403, lifecycle violations 409.
    """

    def __init__(
        self,
        error: str,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        status_code: int = 409,
    ) -> None:
        super().__init__(error, message, status_code, details)


class ConflictError(ServiceError):
    """A uniqueness constraint rejected the write."""

    def __init__(self, error: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error, message, 409, details)


class PaymentRequiredError(ServiceError):
    """Completion attempted before payment reached 'paid'."""

    PROCESSING = "PAYMENT_PROCESSING"
    REQUIRED = "PAYMENT_REQUIRED"

    def __init__(self, error: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error, message, 402, details)


class ExternalServiceError(ServiceError):
    """A collaborating service (gateway, identity) failed or rejected the call."""

    def __init__(self, error: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error, message, 502, details)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    logger = get_logger(__name__)
    logger.warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message, "details": exc.details},
    )


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (e.g., 404/405 from router)."""
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "METHOD_NOT_ALLOWED",
                "message": "Method not allowed",
                "details": {},
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": str(exc.detail),
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
