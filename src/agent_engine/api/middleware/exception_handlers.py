"""
Global exception handlers for the agent API.

Provides centralized error handling with consistent response formatting,
proper logging, and request context integration. Only pre-stream failures
reach these handlers: once the event stream has started, failures are
reported as ``error`` events instead.
"""

from __future__ import annotations

import traceback

from typing import Any

import asyncpg

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from openai import (
    APIError as OpenAIAPIError,
    RateLimitError as OpenAIRateLimitError,
)

from agent_engine.api.middleware.request_context import get_request_context, get_request_id
from agent_engine.core.constants import get_settings
from agent_engine.models.error_models import (
    ErrorCode,
    ErrorDetail,
    ErrorResponse,
    get_status_code,
)
from agent_engine.utils.logger import logger


class AppException(Exception):
    """Base application exception with error code support.

    Example:
        raise AppException(
            code=ErrorCode.VALIDATION_ERROR,
            message="Body is not valid JSON",
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return get_status_code(self.code)


class AuthenticationError(AppException):
    """No valid caller identity could be resolved."""

    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.AUTH_REQUIRED,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, details=details)


class ValidationException(AppException):
    """Malformed request body or empty message list."""

    def __init__(
        self,
        message: str = "Validation error",
        errors: list[ErrorDetail] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            details={"errors": [e.model_dump() for e in errors]} if errors else None,
        )
        self.errors = errors or []


class PayloadTooLargeError(AppException):
    """Declared body size exceeds the request ceiling."""

    def __init__(self, size: int, max_size: int):
        super().__init__(
            code=ErrorCode.PAYLOAD_TOO_LARGE,
            message=f"Request body exceeds maximum size of {max_size} bytes",
            details={"size": size, "max_size": max_size},
        )
        self.size = size
        self.max_size = max_size


class BudgetExceededError(AppException):
    """Monthly provider spend is at or above the ceiling."""

    def __init__(self, cost: float, limit: float):
        super().__init__(
            code=ErrorCode.BUDGET_EXCEEDED,
            message=f"Monthly AI budget exhausted (${cost:.2f} of ${limit:.2f})",
            details={"cost": round(cost, 4), "limit": limit},
        )
        self.cost = cost
        self.limit = limit


#: Status codes raised as plain HTTPException (routing, method not allowed) mapped onto error codes
HTTP_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.AUTH_REQUIRED,
    403: ErrorCode.AUTH_FORBIDDEN,
    413: ErrorCode.PAYLOAD_TOO_LARGE,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.BUDGET_EXCEEDED,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
    504: ErrorCode.EXTERNAL_TIMEOUT,
}


def error_json(
    request: Request | None,
    code: ErrorCode,
    message: str,
    *,
    status_code: int | None = None,
    details: list[ErrorDetail] | None = None,
    error: BaseException | None = None,
    debug_info: dict[str, Any] | None = None,
) -> JSONResponse:
    """Log the failure and render the ``{"error": {...}}`` envelope."""
    status_code = status_code or get_status_code(code)
    ctx = get_request_context()
    fields: dict[str, Any] = ctx.log_fields() if ctx else {}
    fields.update(error_code=code.value, status_code=status_code)

    if status_code >= 500:
        logger.error(f"{code.value}: {error or message}", exc_info=error is not None, **fields)
    else:
        logger.warning(f"{code.value}: {error or message}", **fields)

    include_debug = get_settings().debug and debug_info is not None
    envelope = ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path if request else None,
        details=details,
        debug=debug_info if include_debug else None,
    )
    return JSONResponse(status_code=status_code, content=envelope.to_dict(include_debug=include_debug))


def app_exception_response(request: Request | None, exc: AppException) -> JSONResponse:
    """Render an AppException; also used by middleware that runs outside the router."""
    details = None
    if exc.details and "errors" in exc.details:
        details = [ErrorDetail(**e) for e in exc.details["errors"]]
    elif exc.details:
        details = [ErrorDetail(field=k, message=str(v)) for k, v in exc.details.items()]

    return error_json(
        request,
        exc.code,
        exc.message,
        details=details,
        debug_info={"exception_type": type(exc).__name__, "cause": repr(exc.cause) if exc.cause else None},
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    return app_exception_response(request, exc)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    return error_json(request, code, str(exc.detail), status_code=exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body or query validation performed by FastAPI itself (usage limit updates)."""
    details = [
        ErrorDetail(field=".".join(str(p) for p in err["loc"]), message=err["msg"], code=err["type"])
        for err in exc.errors()
    ]
    return error_json(request, ErrorCode.VALIDATION_ERROR, "Request validation failed", details=details)


async def openai_exception_handler(request: Request, exc: OpenAIAPIError) -> JSONResponse:
    """Provider errors that escape outside the event stream."""
    if isinstance(exc, OpenAIRateLimitError):
        return error_json(request, ErrorCode.EXTERNAL_RATE_LIMITED, "AI provider rate limit exceeded", error=exc)
    return error_json(request, ErrorCode.OPENAI_ERROR, "AI provider request failed", error=exc)


async def asyncpg_exception_handler(request: Request, exc: asyncpg.PostgresError) -> JSONResponse:
    return error_json(request, ErrorCode.DATABASE_ERROR, "Database operation failed", error=exc)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return error_json(
        request,
        ErrorCode.INTERNAL_UNEXPECTED,
        "An unexpected error occurred",
        error=exc,
        debug_info={
            "exception_type": type(exc).__name__,
            "traceback": "".join(traceback.format_exception(exc)),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""
    handlers: list[tuple[type[Exception], Any]] = [
        (AppException, app_exception_handler),
        (HTTPException, http_exception_handler),
        (RequestValidationError, validation_exception_handler),
        (OpenAIAPIError, openai_exception_handler),
        (asyncpg.PostgresError, asyncpg_exception_handler),
        (Exception, generic_exception_handler),
    ]
    for exc_class, handler in handlers:
        app.add_exception_handler(exc_class, handler)


__all__ = [
    "AppException",
    "AuthenticationError",
    "BudgetExceededError",
    "PayloadTooLargeError",
    "ValidationException",
    "app_exception_response",
    "error_json",
    "register_exception_handlers",
]
