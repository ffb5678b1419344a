"""Public API response contracts."""

from clinic.api.contracts.models import (
    ApiErrorResponse,
    ApiSuccessResponse,
    HealthResponse,
    LoginData,
    error_envelope,
    success_envelope,
)

__all__ = [
    "ApiErrorResponse",
    "ApiSuccessResponse",
    "HealthResponse",
    "LoginData",
    "error_envelope",
    "success_envelope",
]
