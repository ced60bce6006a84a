"""Custom exceptions and handlers for consistent error responses.

Every error that reaches a client has the same envelope:

    {
        "error": {
            "code": "STABLE_MACHINE_CODE",
            "message": "Human-readable message",
            "details": {...},          // optional
            "suggestions": ["..."]     // optional remediation hints
        }
    }

Stack traces and internal identifiers are logged, never returned.
"""

import logging
import traceback
from typing import Any, Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class WarehouseException(Exception):
    """Base exception for warehouse application errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Union[dict, list, None] = None,
        suggestions: list[str] | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        self.suggestions = suggestions or []
        self.headers = headers
        super().__init__(self.message)


class DomainValidationError(WarehouseException):
    """Malformed or missing input that the schema layer could not catch."""

    def __init__(
        self,
        message: str,
        error_code: str = "VALIDATION_ERROR",
        details: Union[dict, list, None] = None,
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=error_code,
            details=details,
        )


class BusinessRuleViolation(WarehouseException):
    """Domain-valid request rejected by an operational policy."""

    def __init__(
        self,
        message: str,
        error_code: str = "BUSINESS_RULE_VIOLATION",
        details: Union[dict, list, None] = None,
        suggestions: list[str] | None = None,
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=error_code,
            details=details,
            suggestions=suggestions,
        )


class CompositionViolationError(WarehouseException):
    """A composition failed validation with blocking violations."""

    def __init__(
        self,
        message: str,
        violations: list[dict],
        warnings: list[dict] | None = None,
        suggestions: list[dict] | None = None,
        metrics: dict | None = None,
        error_code: str = "CONSTRAINT_VIOLATIONS",
    ):
        self.violations = violations
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=error_code,
            details={
                "violations": violations,
                "warnings": warnings or [],
                "suggestions": suggestions or [],
                "metrics": metrics or {},
            },
            suggestions=[v["solution"] for v in violations if v.get("solution")],
        )


class ResourceNotFoundError(WarehouseException):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: Any, error_code: str | None = None):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code=error_code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
        )


class ConflictError(WarehouseException):
    """Target position/pallet/UCP is bound elsewhere or in the wrong state."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONFLICT",
        suggestions: list[str] | None = None,
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code=error_code,
            suggestions=suggestions,
        )


class RateLimitExceededError(WarehouseException):
    """Client spent its complexity budget for the current window."""

    def __init__(self, retry_after: int, details: dict):
        super().__init__(
            message=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_code="RATE_LIMIT_EXCEEDED",
            details=details,
            suggestions=["Reduce the number of products per request", "Wait for the window to reset"],
            headers={"Retry-After": str(retry_after)},
        )


class CalculationTimeoutError(WarehouseException):
    """Layout calculation exhausted its time budget on every attempt."""

    retryable = True

    def __init__(self, attempts: int):
        super().__init__(
            message=f"Composition calculation timed out after {attempts} attempt(s)",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="CALCULATION_TIMEOUT",
            suggestions=[
                "Retry with the standard algorithm",
                "Split the composition into fewer products",
            ],
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
    suggestions: list[str] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the ``{"error": {...}}`` envelope; empty details/suggestions are omitted."""
    error: dict[str, Any] = {"code": error_code, "message": message}
    if details:
        error["details"] = details
    if suggestions:
        error["suggestions"] = suggestions
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


def _request_context(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


# ── Handlers ─────────────────────────────────────────────────

async def warehouse_exception_handler(request: Request, exc: WarehouseException) -> JSONResponse:
    """Domain errors: 4xx are client mistakes, 5xx are logged as errors."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{exc.error_code}: {exc.message}",
        extra={"error_code": exc.error_code, "retryable": exc.retryable, **_request_context(request)},
    )
    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
        suggestions=exc.suggestions,
        headers=exc.headers,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """401/403/404 raised by FastAPI itself or by the auth dependencies."""
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}", extra=_request_context(request))
    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Malformed payloads: one entry per offending field."""
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(
        f"Rejected payload on {request.url.path}: {len(errors)} field error(s)",
        extra=_request_context(request),
    )
    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


# Substring of the driver message → (status, code, message)
_INTEGRITY_ERRORS = (
    ("unique", status.HTTP_409_CONFLICT, "DUPLICATE_RECORD", "A record with this value already exists"),
    ("foreign key", status.HTTP_422_UNPROCESSABLE_ENTITY, "FOREIGN_KEY_VIOLATION", "Referenced record does not exist"),
    ("not null", status.HTTP_422_UNPROCESSABLE_ENTITY, "NULL_VALUE_NOT_ALLOWED", "Required field is missing"),
)


async def database_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Constraint violations that slipped past the service checks (e.g. a UCP code race)."""
    driver_message = str(exc.orig) if getattr(exc, "orig", None) is not None else str(exc)
    logger.error(f"Integrity error on {request.url.path}: {driver_message}", extra=_request_context(request))

    lowered = driver_message.lower()
    for needle, status_code, error_code, message in _INTEGRITY_ERRORS:
        if needle in lowered:
            return create_error_response(status_code, message, error_code)
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY, "Database constraint violation", "INTEGRITY_ERROR"
    )


async def operational_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.critical(f"Database unavailable on {request.url.path}: {exc}", extra=_request_context(request))
    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything else is a 500 with no internals in the body."""
    logger.error(
        f"Unhandled exception on {request.url.path}: {exc}",
        extra={**_request_context(request), "traceback": traceback.format_exc()},
        exc_info=True,
    )
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(WarehouseException, warehouse_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
