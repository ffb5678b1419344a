"""Admin endpoints for managing user accounts."""

from __future__ import annotations

import logging
import math
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from clinic.api.contracts import error_envelope, success_envelope
from clinic.api.errors import ApiErrorCode
from clinic.audit.repository import AuditLogRepository
from clinic.core.config import AuthConfig
from clinic.core.security import hash_password
from clinic.users.models import User, UserCreate, UserUpdate
from clinic.users.repository import DuplicateUserError, UserRepository
from clinic.web.request import Request
from clinic.web.response import Response

LOGGER = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def validation_errors(exc: PydanticValidationError) -> dict[str, str]:
    """Flatten pydantic errors into ``field -> message``."""
    errors: dict[str, str] = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "body"
        errors.setdefault(field, error["msg"])
    return errors


def _parse_bool(value: Any) -> bool | None:
    if value is None or value == "":
        return None
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean: {value}")


def _duplicate_envelope(exc: DuplicateUserError) -> dict[str, Any]:
    return error_envelope(
        "Validation failed",
        400,
        {exc.field: str(exc)},
        error_code=ApiErrorCode.CONFLICT,
    )


class UserController:
    """CRUD over users with an audit entry for every mutation."""

    def __init__(
        self,
        users: UserRepository,
        audit: AuditLogRepository,
        auth_config: AuthConfig,
    ) -> None:
        self._users = users
        self._audit = audit
        self._auth_config = auth_config

    def index(self, request: Request, response: Response) -> dict[str, Any]:
        """List users with ``user_type``/``active``/``search`` filters and paging."""
        try:
            page = int(request.get_query_param("page", 1))
            per_page = int(request.get_query_param("per_page", 20))
            active = _parse_bool(request.get_query_param("active"))
        except ValueError:
            return error_envelope("Invalid query parameters", 400)

        filters = {
            "user_type": request.get_query_param("user_type"),
            "active": active,
            "search": request.get_query_param("search"),
        }
        page = max(1, page)
        per_page = max(1, min(100, per_page))
        rows, total = self._users.list(filters, page, per_page)
        return success_envelope(
            [user.public_dict() for user in rows],
            "Users retrieved",
            pagination={
                "page": page,
                "per_page": per_page,
                "total": total,
                "pages": math.ceil(total / per_page) if total else 0,
            },
        )

    def show(self, request: Request, response: Response) -> dict[str, Any]:
        user = self._find(request)
        if user is None:
            return error_envelope("User not found", 404, error_code=ApiErrorCode.RESOURCE_NOT_FOUND)
        return success_envelope(user.public_dict(), "User retrieved")

    def store(self, request: Request, response: Response) -> dict[str, Any]:
        """Create a user from the request body."""
        payload = self._validate(UserCreate, request.json())
        if not isinstance(payload, UserCreate):
            return payload
        min_length = self._auth_config.password_min_length
        if len(payload.password) < min_length:
            return error_envelope(
                "Validation failed",
                400,
                {"password": f"Password must be at least {min_length} characters"},
                error_code=ApiErrorCode.VALIDATION_ERROR,
            )

        try:
            user = self._users.create(payload, hash_password(payload.password))
        except DuplicateUserError as exc:
            return _duplicate_envelope(exc)

        self._record(request, "user_created", user.id, new_data=user.public_dict())
        response.set_status(201)
        return success_envelope(user.public_dict(), "User created")

    def update(self, request: Request, response: Response) -> dict[str, Any]:
        current = self._find(request)
        if current is None:
            return error_envelope("User not found", 404, error_code=ApiErrorCode.RESOURCE_NOT_FOUND)
        payload = self._validate(UserUpdate, request.json())
        if not isinstance(payload, UserUpdate):
            return payload

        changes = payload.model_dump(exclude_unset=True)
        if request.user is not None and request.user.id == current.id:
            if changes.get("active") is False:
                return error_envelope("You cannot deactivate your own account", 400)
            if changes.get("user_type") not in (None, current.user_type):
                return error_envelope("You cannot change your own role", 400)

        try:
            updated = self._users.update(current.id, changes)
        except DuplicateUserError as exc:
            return _duplicate_envelope(exc)
        if updated is None:
            return error_envelope("User not found", 404, error_code=ApiErrorCode.RESOURCE_NOT_FOUND)

        self._record(
            request,
            "user_updated",
            current.id,
            old_data=current.public_dict(),
            new_data=updated.public_dict(),
        )
        return success_envelope(updated.public_dict(), "User updated")

    def activate(self, request: Request, response: Response) -> dict[str, Any]:
        return self._set_active(request, True)

    def deactivate(self, request: Request, response: Response) -> dict[str, Any]:
        return self._set_active(request, False)

    def destroy(self, request: Request, response: Response) -> dict[str, Any]:
        user = self._find(request)
        if user is None:
            return error_envelope("User not found", 404, error_code=ApiErrorCode.RESOURCE_NOT_FOUND)
        if request.user is not None and request.user.id == user.id:
            return error_envelope("You cannot delete your own account", 400)
        self._users.delete(user.id)
        self._record(request, "user_deleted", user.id, old_data=user.public_dict())
        return success_envelope(message="User deleted")

    def _set_active(self, request: Request, active: bool) -> dict[str, Any]:
        user = self._find(request)
        if user is None:
            return error_envelope("User not found", 404, error_code=ApiErrorCode.RESOURCE_NOT_FOUND)
        if not active and request.user is not None and request.user.id == user.id:
            return error_envelope("You cannot deactivate your own account", 400)
        if active:
            self._users.activate(user.id)
        else:
            self._users.deactivate(user.id)
        self._record(
            request,
            "user_activated" if active else "user_deactivated",
            user.id,
            old_data={"active": user.active},
            new_data={"active": active},
        )
        return success_envelope(message="User activated" if active else "User deactivated")

    def _find(self, request: Request) -> User | None:
        raw = str(request.get_param("id") or "")
        if not raw.isdigit():
            return None
        return self._users.get_by_id(int(raw))

    @staticmethod
    def _validate(model: type[BaseModel], body: dict[str, Any]) -> BaseModel | dict[str, Any]:
        try:
            return model.model_validate(body)
        except PydanticValidationError as exc:
            return error_envelope(
                "Validation failed",
                400,
                validation_errors(exc),
                error_code=ApiErrorCode.VALIDATION_ERROR,
            )

    def _record(
        self,
        request: Request,
        action: str,
        record_id: int,
        *,
        old_data: Any = None,
        new_data: Any = None,
    ) -> None:
        actor = request.user.id if request.user is not None else None
        self._audit.record(
            actor,
            action,
            affected_table="users",
            affected_record_id=record_id,
            old_data=old_data,
            new_data=new_data,
            ip_address=request.client_ip,
        )
        LOGGER.info(action, extra={"action": action, "user_id": actor})
