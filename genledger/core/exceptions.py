from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class InvalidInputError(AppError):
    def __init__(self, message: str = "Invalid input", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_INPUT", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InsufficientCreditsError(AppError):
    def __init__(self, required: int, balance: int):
        super().__init__(
            f"Insufficient credits: {required} required, {balance} available",
            code="INSUFFICIENT_CREDITS",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"required": required, "balance": balance},
        )
        self.required = required
        self.balance = balance


class UpstreamUnavailableError(AppError):
    """Generation API unreachable (transport error, timeout, not configured)."""

    def __init__(self, message: str = "Generation service unavailable", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="UPSTREAM_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
        )


class UpstreamRejectedError(AppError):
    """Generation API answered, but with an error status or an unusable payload."""

    def __init__(self, message: str = "Generation request rejected", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="UPSTREAM_REJECTED",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
        )


class InternalError(AppError):
    def __init__(self, message: str = "Internal server error", details: dict[str, Any] | None = None):
        super().__init__(message, details=details)


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from genledger.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    return error_response(request, InternalError())
