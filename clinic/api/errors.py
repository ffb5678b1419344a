"""Shared API error types and helpers."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from fastapi import HTTPException


class ApiErrorCode(StrEnum):
    """Machine-readable API error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_MISSING_TOKEN = "AUTH_MISSING_TOKEN"
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_RATE_LIMITED = "AUTH_RATE_LIMITED"
    FORBIDDEN = "FORBIDDEN"
    ACCESS_DENIED = "ACCESS_DENIED"
    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    CONFLICT = "CONFLICT"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class ApiError(HTTPException):
    """HTTP exception carrying stable API error envelope."""

    def __init__(
        self,
        *,
        status_code: int,
        error_code: ApiErrorCode,
        message: str,
        errors: dict[str, Any] | None = None,
    ) -> None:
        """Build an HTTP exception with standard detail structure."""
        detail: dict[str, Any] = {"error_code": str(error_code), "message": message}
        if errors:
            detail["errors"] = errors
        super().__init__(status_code=status_code, detail=detail)


class ValidationError(ApiError):
    """Malformed or missing input (400)."""

    def __init__(self, message: str, errors: dict[str, Any] | None = None) -> None:
        super().__init__(
            status_code=400,
            error_code=ApiErrorCode.VALIDATION_ERROR,
            message=message,
            errors=errors,
        )


class ConflictError(ApiError):
    """Duplicate unique value, reported to clients as a validation failure."""

    def __init__(self, message: str, errors: dict[str, Any] | None = None) -> None:
        super().__init__(
            status_code=400,
            error_code=ApiErrorCode.CONFLICT,
            message=message,
            errors=errors,
        )


class AuthError(ApiError):
    """Bad credentials, or a missing/expired token (401)."""

    def __init__(
        self,
        message: str = "Unauthorized",
        error_code: ApiErrorCode = ApiErrorCode.AUTH_TOKEN_INVALID,
    ) -> None:
        super().__init__(status_code=401, error_code=error_code, message=message)


class ForbiddenError(ApiError):
    """Authenticated caller lacks the required role (403)."""

    def __init__(
        self,
        message: str = "Forbidden",
        error_code: ApiErrorCode = ApiErrorCode.FORBIDDEN,
    ) -> None:
        super().__init__(status_code=403, error_code=error_code, message=message)


class AccessDeniedError(ForbiddenError):
    """A route middleware rejected the request without writing a response."""

    def __init__(self, middleware: str) -> None:
        super().__init__(
            f"Access denied by middleware: {middleware}",
            error_code=ApiErrorCode.ACCESS_DENIED,
        )
        self.middleware = middleware


class NotFoundError(ApiError):
    """Unknown route or resource (404)."""

    def __init__(
        self,
        message: str = "Resource not found",
        error_code: ApiErrorCode = ApiErrorCode.RESOURCE_NOT_FOUND,
    ) -> None:
        super().__init__(status_code=404, error_code=error_code, message=message)


class RateLimitedError(ApiError):
    """Too many failed login attempts (429)."""

    def __init__(self, message: str) -> None:
        super().__init__(
            status_code=429, error_code=ApiErrorCode.AUTH_RATE_LIMITED, message=message
        )


class InternalError(ApiError):
    """Unexpected failure surfaced deliberately by application code (500)."""

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(
            status_code=500,
            error_code=ApiErrorCode.INTERNAL_SERVER_ERROR,
            message=message,
        )


def to_error_payload(detail: Any, status_code: int) -> dict[str, Any]:
    """Normalize HTTP exception detail into the ``status: error`` envelope."""
    if isinstance(detail, dict):
        payload: dict[str, Any] = {
            "status": "error",
            "code": status_code,
            "error_code": str(detail.get("error_code") or f"HTTP_{status_code}"),
            "message": str(detail.get("message") or detail.get("detail") or "HTTP error"),
        }
        if detail.get("errors"):
            payload["errors"] = detail["errors"]
        return payload
    return {
        "status": "error",
        "code": status_code,
        "error_code": f"HTTP_{status_code}",
        "message": str(detail or "HTTP error"),
    }
