"""Pydantic models for users."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, EmailStr, Field

PRIVATE_FIELDS = {"password_hash", "reset_token", "reset_token_expires_at"}


class UserType(StrEnum):
    """Roles a user account can hold."""

    ADMIN = "admin"
    COORDINATOR = "coordinator"
    STUDENT = "student"


class User(BaseModel):
    """Persisted user row."""

    id: int
    name: str
    national_id: str
    email: str
    password_hash: str = ""
    phone: str | None = None
    user_type: UserType
    active: bool = True
    reset_token: str | None = None
    reset_token_expires_at: int | None = None
    last_access_at: int | None = None
    created_at: int = 0
    updated_at: int | None = None

    def public_dict(self) -> dict[str, Any]:
        """Return the projection that is safe to send to clients."""
        return self.model_dump(mode="json", exclude=PRIVATE_FIELDS)


class UserCreate(BaseModel):
    """Payload for creating a user."""

    name: str = Field(min_length=1, max_length=100)
    national_id: str = Field(min_length=1, max_length=20)
    email: EmailStr
    password: str = Field(min_length=1)
    phone: str | None = Field(default=None, max_length=20)
    user_type: UserType
    active: bool = True


class UserUpdate(BaseModel):
    """Partial update; unset fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    national_id: str | None = Field(default=None, min_length=1, max_length=20)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=20)
    user_type: UserType | None = None
    active: bool | None = None
