"""
Consistent error handling for the marketplace API.

All API errors MUST use these standard error classes and shapes.
Stack traces are NEVER returned to clients.

Standard HTTP status codes:
- 400: Bad Request (validation errors)
- 401: Unauthorized (not signed in; details carry sign_in_url)
- 402: Payment Required (payment failed or not verified)
- 403: Forbidden (permission denied)
- 404: Not Found
- 409: Conflict (stale tier selection, duplicate payment, already reviewed)
- 500: Internal Server Error
- 503: Service Unavailable (access catalog or payments unavailable)
"""

import logging
import uuid
from typing import Any, Optional
from urllib.parse import quote

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from marketplace.entitlements.errors import (
    ConfigUnavailableError,
    DuplicatePaymentError,
    EntitlementError,
    InvalidTierError,
    NotAuthenticatedError,
    PaymentCancelledError,
    PaymentFailedError,
    PaymentNotVerifiedError,
    WriteFailedError,
)

logger = logging.getLogger(__name__)

DEFAULT_SIGN_IN_PATH = "/login"


class AppError(Exception):
    """
    Base application error with consistent error shape.

    All custom errors should inherit from this class.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to API error response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class AuthenticationError(AppError):
    """Authentication failure (401)."""

    def __init__(self, message: str = "Authentication required", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="AUTHENTICATION_ERROR",
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details,
        )


class PaymentRequiredError(AppError):
    """Payment did not go through (402)."""

    def __init__(
        self,
        message: str = "Payment is required",
        code: str = "PAYMENT_REQUIRED",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details=details,
        )


class PermissionDeniedError(AppError):
    """Permission denied (403)."""

    def __init__(self, message: str = "Permission denied", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="PERMISSION_DENIED",
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ConflictError(AppError):
    """Resource conflict (409)."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        code: str = "CONFLICT",
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class ServiceUnavailableError(AppError):
    """Service unavailable (503)."""

    def __init__(self, message: str = "Service temporarily unavailable", code: str = "SERVICE_UNAVAILABLE"):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


def build_sign_in_url(sign_in_path: str, intent: Optional[str]) -> str:
    if not intent:
        return sign_in_path
    return f"{sign_in_path}?redirect={quote(intent, safe='/')}"


def to_app_error(exc: EntitlementError, request: Optional[Request] = None) -> AppError:
    """Map a connection entitlement failure to its HTTP shape."""
    if isinstance(exc, ConfigUnavailableError):
        return ServiceUnavailableError(
            "Connection access is temporarily unavailable. Please try again shortly.",
            code=exc.error_code,
        )
    if isinstance(exc, NotAuthenticatedError):
        sign_in_path = DEFAULT_SIGN_IN_PATH
        intent = exc.intent
        if request is not None:
            settings = getattr(request.app.state, "settings", None)
            if settings is not None:
                sign_in_path = settings.sign_in_path
            intent = intent or request.url.path
        return AuthenticationError(
            exc.message,
            details={"sign_in_url": build_sign_in_url(sign_in_path, intent), "intent": intent},
        )
    if isinstance(exc, InvalidTierError):
        return ConflictError(
            "The selected access option is no longer available. Please choose again.",
            details={"tier_id": exc.tier_id},
            code=exc.error_code,
        )
    if isinstance(exc, PaymentFailedError):
        details = {"order_id": exc.order_id} if exc.order_id else None
        return PaymentRequiredError(exc.reason, code=exc.error_code, details=details)
    if isinstance(exc, PaymentNotVerifiedError):
        return PaymentRequiredError(exc.message, code=exc.error_code)
    if isinstance(exc, PaymentCancelledError):
        return ConflictError(exc.message, code=exc.error_code)
    if isinstance(exc, DuplicatePaymentError):
        return ConflictError("This payment has already been used", code=exc.error_code)
    if isinstance(exc, WriteFailedError):
        return AppError(
            code=exc.error_code,
            message="Something went wrong. Please try again.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return AppError(code=exc.error_code, message=exc.message)


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """
    Get correlation ID from request or generate new one.

    Checks X-Correlation-ID header first, then request state.
    """
    correlation_id = request.headers.get("X-Correlation-ID")
    if correlation_id:
        return correlation_id

    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id

    return generate_correlation_id()


def _error_response(request: Request, error: AppError) -> JSONResponse:
    correlation_id = get_correlation_id(request)
    logger.warning(
        "Application error",
        extra={
            "correlation_id": correlation_id,
            "error_code": error.code,
            "status_code": error.status_code,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_dict(),
        headers={"X-Correlation-ID": correlation_id},
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return _error_response(request, exc)


async def entitlement_error_handler(request: Request, exc: EntitlementError) -> JSONResponse:
    return _error_response(request, to_app_error(exc, request))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": "HTTP_ERROR",
                "message": str(exc.detail),
                "details": {},
            }
        },
        headers={"X-Correlation-ID": get_correlation_id(request)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(EntitlementError, entitlement_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware that stamps correlation IDs and turns anything unhandled into
    a generic 500.

    IMPORTANT: Stack traces are NEVER returned to clients.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except AppError as e:
            return _error_response(request, e)

        except EntitlementError as e:
            return _error_response(request, to_app_error(e, request))

        except Exception as e:
            logger.exception(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred",
                        "details": {"correlation_id": correlation_id},
                    }
                },
                headers={"X-Correlation-ID": correlation_id},
            )
