"""Pydantic response envelopes shared by controllers and the error boundary."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ApiErrorResponse(BaseModel):
    """Stable error envelope for API responses."""

    status: Literal["error"] = "error"
    code: int = Field(description="HTTP status code")
    message: str = Field(description="Human-readable error message")
    error_code: str | None = Field(default=None, description="Machine-readable error code")
    errors: dict[str, Any] | None = None


class ApiSuccessResponse(BaseModel):
    """Stable success envelope for API responses."""

    status: Literal["success"] = "success"
    message: str = ""
    data: Any = None


class HealthResponse(BaseModel):
    """Health check response payload."""

    status: Literal["ok"]


class LoginData(BaseModel):
    """Payload returned by a successful login."""

    token: str
    user: dict[str, Any]
    expires_in: int


def success_envelope(
    data: Any = None, message: str = "Operation completed successfully", **extra: Any
) -> dict[str, Any]:
    """Build a ``status: success`` envelope, omitting ``None`` values."""
    payload = ApiSuccessResponse(message=message, data=data).model_dump(
        exclude_none=True
    )
    payload.update({key: value for key, value in extra.items() if value is not None})
    return payload


def error_envelope(
    message: str,
    code: int = 400,
    errors: dict[str, Any] | None = None,
    error_code: str | None = None,
) -> dict[str, Any]:
    """Build a ``status: error`` envelope carrying the HTTP status in ``code``."""
    return ApiErrorResponse(
        code=code, message=message, errors=errors or None, error_code=error_code
    ).model_dump(exclude_none=True)
