"""Pydantic models for authentication payloads."""

from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    """Login request payload."""

    email: EmailStr
    password: str = Field(min_length=1)


class PasswordResetRequest(BaseModel):
    """Forgot-password request payload."""

    email: EmailStr


class TokenClaims(BaseModel):
    """Claims carried by an issued bearer token."""

    iat: int
    exp: int
    user_id: int
    user_type: str
