"""Token-based authentication endpoints."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from clinic.api.contracts import LoginData, error_envelope, success_envelope
from clinic.api.errors import ApiErrorCode, RateLimitedError
from clinic.audit.repository import AuditLogRepository
from clinic.auth.models import LoginRequest, PasswordResetRequest, TokenClaims
from clinic.auth.rate_limiter import LoginRateLimiter
from clinic.careers.repository import CareerRepository
from clinic.core.clock import Clock, now_ts, system_clock
from clinic.core.config import AppConfig
from clinic.core.security import (
    build_signed_token,
    decode_signed_token,
    dummy_password_hash,
    generate_reset_token,
    hash_password,
    verify_password,
)
from clinic.students.repository import StudentProfileRepository
from clinic.users.models import User, UserCreate, UserType
from clinic.users.repository import UserRepository
from clinic.web.request import Request
from clinic.web.response import Response

LOGGER = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
RESET_REQUESTED_MESSAGE = (
    "If the email exists in our system, you will receive instructions to reset your password"
)


# Compared verbatim: surrounding whitespace is part of the secret.
VERBATIM_FIELDS = frozenset({"password", "current_password", "new_password", "confirm_password"})


def _missing(body: dict[str, Any], names: Iterable[str]) -> bool:
    for name in names:
        value = str(body.get(name) or "")
        if not (value if name in VERBATIM_FIELDS else value.strip()):
            return True
    return False


class AuthController:
    """Login, logout, password reset and profile operations.

    Business failures are returned as ``status: error`` envelopes carrying the
    HTTP status in ``code``; the router maps that code onto the response.
    """

    def __init__(
        self,
        users: UserRepository,
        audit: AuditLogRepository,
        students: StudentProfileRepository,
        careers: CareerRepository,
        config: AppConfig,
        *,
        rate_limiter: LoginRateLimiter | None = None,
        clock: Clock = system_clock,
    ) -> None:
        """Initialize controller dependencies."""
        self._users = users
        self._audit = audit
        self._students = students
        self._careers = careers
        self._config = config
        self._rate_limiter = rate_limiter
        self._clock = clock

    def bootstrap_admin_user(self) -> None:
        """Ensure the configured admin account exists."""
        auth = self._config.auth
        if not auth.admin_email or not auth.admin_password:
            return
        if self._users.get_by_email(auth.admin_email) is not None:
            return
        user = self._users.create(
            UserCreate(
                name="Administrator",
                national_id=auth.admin_national_id or "admin",
                email=auth.admin_email,
                password=auth.admin_password,
                user_type=UserType.ADMIN,
            ),
            hash_password(auth.admin_password),
        )
        LOGGER.info("admin_bootstrapped", extra={"action": "admin_bootstrap", "user_id": user.id})

    # Credentials

    def authenticate(self, email: str, password: str, client_ip: str) -> User | None:
        """Check credentials, recording failures; ``None`` on any mismatch.

        Raises ``RateLimitedError`` while the (email, ip) pair is locked out.
        """
        if self._rate_limiter is not None:
            self._rate_limiter.assert_allowed(email=email, client_ip=client_ip)
        user = self._users.get_by_email(email)
        if user is None or not user.active:
            # Same PBKDF2 cost whether or not the account exists.
            verify_password(password, user.password_hash if user else dummy_password_hash())
            LOGGER.info("login_rejected", extra={"action": "login_failed"})
            self._record_failure(email, client_ip)
            return None
        if not verify_password(password, user.password_hash):
            self._record_failure(email, client_ip)
            self._audit.record(
                user.id,
                "login_failed",
                affected_table="users",
                affected_record_id=user.id,
                ip_address=client_ip,
            )
            LOGGER.info("login_rejected", extra={"action": "login_failed", "user_id": user.id})
            return None
        if self._rate_limiter is not None:
            self._rate_limiter.record_success(email=email, client_ip=client_ip)
        return user

    def _record_failure(self, email: str, client_ip: str) -> None:
        if self._rate_limiter is not None:
            self._rate_limiter.record_failure(email=email, client_ip=client_ip)

    def complete_login(self, user: User, client_ip: str) -> User:
        """Stamp last access and audit a successful login."""
        self._users.update_last_access(user.id)
        self._audit.record(
            user.id,
            "login",
            affected_table="users",
            affected_record_id=user.id,
            ip_address=client_ip,
        )
        LOGGER.info("login_succeeded", extra={"action": "login", "user_id": user.id})
        return self._users.get_by_id(user.id) or user

    def issue_token(self, user: User) -> str:
        """Sign a bearer token for ``user``."""
        issued_at = now_ts(self._clock)
        claims = TokenClaims(
            iat=issued_at,
            exp=issued_at + self._config.auth.token_ttl_seconds,
            user_id=user.id,
            user_type=str(user.user_type),
        )
        return build_signed_token(claims.model_dump(), self._config.auth.secret_key)

    def login(self, request: Request, response: Response | None = None) -> dict[str, Any]:
        """Exchange email and password for a bearer token."""
        body = request.json()
        if _missing(body, ("email", "password")):
            return error_envelope("Email and password are required", 400)
        try:
            payload = LoginRequest.model_validate(
                {"email": str(body["email"]).strip(), "password": str(body["password"])}
            )
        except PydanticValidationError:
            return error_envelope(
                "Invalid email format", 400, error_code=ApiErrorCode.VALIDATION_ERROR
            )

        try:
            user = self.authenticate(str(payload.email), payload.password, request.client_ip)
        except RateLimitedError as exc:
            return error_envelope(
                exc.detail["message"], 429, error_code=ApiErrorCode.AUTH_RATE_LIMITED
            )
        if user is None:
            return error_envelope(
                INVALID_CREDENTIALS, 401, error_code=ApiErrorCode.AUTH_INVALID_CREDENTIALS
            )

        user = self.complete_login(user, request.client_ip)

        data = LoginData(
            token=self.issue_token(user),
            user=user.public_dict(),
            expires_in=self._config.auth.token_ttl_seconds,
        )
        return success_envelope(data.model_dump(), "Login successful")

    def logout(self, request: Request, response: Response | None = None) -> dict[str, Any]:
        """Record the logout; the client discards its token."""
        user = self._current(request)
        if user is not None:
            self._audit.record(
                user.id,
                "logout",
                affected_table="users",
                affected_record_id=user.id,
                ip_address=request.client_ip,
            )
        return success_envelope(message="Logged out successfully")

    # Password reset

    def request_password_reset(
        self, request: Request, response: Response | None = None
    ) -> dict[str, Any]:
        """Issue a reset token without revealing whether the account exists."""
        email = str(request.get_body_param("email") or "").strip()
        if not email:
            return error_envelope("Email is required", 400)
        try:
            email = str(PasswordResetRequest.model_validate({"email": email}).email)
        except PydanticValidationError:
            return error_envelope(
                "Invalid email format", 400, error_code=ApiErrorCode.VALIDATION_ERROR
            )

        dev_reset_url = None
        user = self._users.get_by_email(email)
        if user is not None and user.active:
            token = generate_reset_token()
            expires_at = now_ts(self._clock) + self._config.auth.reset_token_ttl_seconds
            self._users.save_reset_token(user.id, token, expires_at)
            self._audit.record(
                user.id,
                "password_reset_requested",
                affected_table="users",
                affected_record_id=user.id,
                ip_address=request.client_ip,
            )
            LOGGER.info(
                "password_reset_requested",
                extra={"action": "password_reset_requested", "user_id": user.id},
            )
            if self._config.is_development:
                dev_reset_url = f"{self._config.app.base_url}/reset-password/{token}"

        return success_envelope(message=RESET_REQUESTED_MESSAGE, dev_reset_url=dev_reset_url)

    def _user_for_reset_token(self, token: str) -> tuple[User | None, dict[str, Any] | None]:
        user = self._users.get_by_reset_token(token)
        if user is None:
            return None, error_envelope("Invalid token", 400)
        expires_at = user.reset_token_expires_at or 0
        if expires_at < now_ts(self._clock):
            return None, error_envelope("Token has expired", 400)
        return user, None

    def validate_reset_token(
        self, request: Request, response: Response | None = None
    ) -> dict[str, Any]:
        """Check the reset token taken from the ``token`` path param."""
        token = str(request.get_param("token") or "").strip()
        if not token:
            return error_envelope("Token not provided", 400)
        _, failure = self._user_for_reset_token(token)
        if failure is not None:
            return failure
        return success_envelope(message="Token is valid")

    def reset_password(self, request: Request, response: Response | None = None) -> dict[str, Any]:
        """Set a new password using a valid reset token."""
        body = request.json()
        if _missing(body, ("token", "new_password", "confirm_password")):
            return error_envelope("Token and passwords are required", 400)
        new_password = str(body["new_password"])
        failure = self._check_new_password(new_password, str(body["confirm_password"]))
        if failure is not None:
            return failure

        user, failure = self._user_for_reset_token(str(body["token"]).strip())
        if user is None:
            return failure or error_envelope("Invalid token", 400)

        self._users.update_password(user.id, hash_password(new_password))
        self._audit.record(
            user.id,
            "password_reset",
            affected_table="users",
            affected_record_id=user.id,
            ip_address=request.client_ip,
        )
        LOGGER.info("password_reset", extra={"action": "password_reset", "user_id": user.id})
        return success_envelope(message="Password updated successfully")

    def change_password(
        self, request: Request, response: Response | None = None
    ) -> dict[str, Any]:
        """Replace the caller's password after verifying the current one."""
        user = self._current(request)
        if user is None:
            return error_envelope("Unauthorized", 401, error_code=ApiErrorCode.AUTH_TOKEN_INVALID)

        body = request.json()
        if _missing(body, ("current_password", "new_password", "confirm_password")):
            return error_envelope("All fields are required", 400)
        new_password = str(body["new_password"])
        failure = self._check_new_password(new_password, str(body["confirm_password"]))
        if failure is not None:
            return failure
        if not verify_password(str(body["current_password"]), user.password_hash):
            return error_envelope("Current password is incorrect", 400)

        self._users.update_password(user.id, hash_password(new_password))
        self._audit.record(
            user.id,
            "password_changed",
            affected_table="users",
            affected_record_id=user.id,
            ip_address=request.client_ip,
        )
        LOGGER.info("password_changed", extra={"action": "password_changed", "user_id": user.id})
        return success_envelope(message="Password updated successfully")

    def _check_new_password(self, new_password: str, confirm_password: str) -> dict[str, Any] | None:
        if new_password != confirm_password:
            return error_envelope("Passwords do not match", 400)
        min_length = self._config.auth.password_min_length
        if len(new_password) < min_length:
            return error_envelope(f"Password must be at least {min_length} characters", 400)
        return None

    # Current user

    def get_profile(self, request: Request, response: Response | None = None) -> dict[str, Any]:
        """Return the caller with role-specific data attached."""
        user = self._current(request)
        if user is None:
            return error_envelope("Unauthorized", 401, error_code=ApiErrorCode.AUTH_TOKEN_INVALID)

        data = user.public_dict()
        if user.user_type == UserType.STUDENT:
            profile = self._students.get_by_user_id(user.id)
            if profile is not None:
                data["student_profile"] = profile.model_dump()
        elif user.user_type == UserType.COORDINATOR:
            data["assigned_careers"] = [
                career.model_dump() for career in self._careers.assigned_to_coordinator(user.id)
            ]
        return success_envelope(data, "Profile retrieved")

    def get_current_user(self, request: Request) -> User | None:
        """Resolve the active user behind the bearer token, or ``None``."""
        token = request.bearer_token()
        if not token:
            return None
        try:
            payload = decode_signed_token(
                token, self._config.auth.secret_key, now=now_ts(self._clock)
            )
            claims = TokenClaims.model_validate(payload)
        except (ValueError, PydanticValidationError):
            return None
        user = self._users.get_by_id(claims.user_id)
        if user is None or not user.active:
            return None
        return user

    def has_role(self, request: Request, roles: str | Iterable[str]) -> bool:
        """Return whether the current user holds one of ``roles``."""
        user = self._current(request)
        if user is None:
            return False
        allowed = {roles} if isinstance(roles, str) else set(roles)
        return str(user.user_type) in allowed

    def _current(self, request: Request) -> User | None:
        return request.user if request.user is not None else self.get_current_user(request)
