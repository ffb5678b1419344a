"""SQLite repository for user accounts."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from clinic.core.clock import Clock, now_ts, system_clock
from clinic.core.database import Database, IntegrityViolation
from clinic.users.models import User, UserCreate

UPDATABLE_COLUMNS = ("name", "national_id", "email", "phone", "user_type", "active")


class DuplicateUserError(ValueError):
    """Raised when an email or national id is already taken."""

    def __init__(self, field: str) -> None:
        super().__init__(f"{field} is already registered")
        self.field = field


def _build_filters(filters: Mapping[str, Any] | None) -> tuple[str, dict[str, Any]]:
    """Translate ``user_type``/``active``/``search`` filters into SQL."""
    conditions: list[str] = []
    params: dict[str, Any] = {}
    filters = filters or {}
    if filters.get("user_type"):
        conditions.append("user_type = :user_type")
        params["user_type"] = str(filters["user_type"])
    if filters.get("active") is not None:
        conditions.append("active = :active")
        params["active"] = 1 if filters["active"] else 0
    if filters.get("search"):
        conditions.append("(name LIKE :search OR email LIKE :search OR national_id LIKE :search)")
        params["search"] = f"%{filters['search']}%"
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


class UserRepository:
    """Read and write ``users`` rows."""

    def __init__(self, database: Database, clock: Clock = system_clock) -> None:
        self._db = database
        self._clock = clock

    def list(
        self,
        filters: Mapping[str, Any] | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[User], int]:
        """Return one page of users ordered by name, plus the filtered total."""
        page = max(1, int(page))
        per_page = max(1, min(100, int(per_page)))
        where, params = _build_filters(filters)
        total = self._db.query_one(f"SELECT COUNT(*) AS total FROM users {where}", params)
        rows = self._db.query(
            f"SELECT * FROM users {where} ORDER BY name ASC LIMIT :limit OFFSET :offset",
            {**params, "limit": per_page, "offset": (page - 1) * per_page},
        )
        return [User.model_validate(row) for row in rows], int(total["total"] if total else 0)

    def get_by_id(self, user_id: int) -> User | None:
        return self._one("SELECT * FROM users WHERE id = :id", {"id": user_id})

    def get_by_email(self, email: str) -> User | None:
        return self._one(
            "SELECT * FROM users WHERE email = :email", {"email": email.strip()}
        )

    def get_by_national_id(self, national_id: str) -> User | None:
        return self._one(
            "SELECT * FROM users WHERE national_id = :national_id",
            {"national_id": national_id.strip()},
        )

    def get_by_reset_token(self, token: str) -> User | None:
        """Return the active user holding ``token``; expiry is checked by the caller."""
        if not token:
            return None
        return self._one(
            "SELECT * FROM users WHERE reset_token = :token AND active = 1",
            {"token": token},
        )

    def create(self, data: UserCreate, password_hash: str) -> User:
        """Insert a user; raises ``DuplicateUserError`` on taken email/national id."""
        if not self.is_email_available(data.email):
            raise DuplicateUserError("email")
        if not self.is_national_id_available(data.national_id):
            raise DuplicateUserError("national_id")
        try:
            user_id = self._db.insert(
                """
                INSERT INTO users (
                    name, national_id, email, password_hash, phone,
                    user_type, active, created_at
                ) VALUES (
                    :name, :national_id, :email, :password_hash, :phone,
                    :user_type, :active, :created_at
                )
                """,
                {
                    "name": data.name.strip(),
                    "national_id": data.national_id.strip(),
                    "email": str(data.email).strip().lower(),
                    "password_hash": password_hash,
                    "phone": data.phone,
                    "user_type": str(data.user_type),
                    "active": 1 if data.active else 0,
                    "created_at": now_ts(self._clock),
                },
            )
        except IntegrityViolation as exc:
            raise DuplicateUserError("email" if "email" in str(exc) else "national_id") from exc
        user = self.get_by_id(user_id)
        assert user is not None
        return user

    def update(self, user_id: int, changes: Mapping[str, Any]) -> User | None:
        """Apply a partial update; returns ``None`` when the user is missing."""
        current = self.get_by_id(user_id)
        if current is None:
            return None

        values = {
            column: changes[column]
            for column in UPDATABLE_COLUMNS
            if column in changes and changes[column] is not None
        }
        if "email" in values:
            values["email"] = str(values["email"]).strip().lower()
            if values["email"] != current.email.lower() and not self.is_email_available(
                values["email"], exclude_id=user_id
            ):
                raise DuplicateUserError("email")
        if "national_id" in values:
            values["national_id"] = str(values["national_id"]).strip()
            if not self.is_national_id_available(values["national_id"], exclude_id=user_id):
                raise DuplicateUserError("national_id")
        if "user_type" in values:
            values["user_type"] = str(values["user_type"])
        if "active" in values:
            values["active"] = 1 if values["active"] else 0
        if not values:
            return current

        assignments = ", ".join(f"{column} = :{column}" for column in values)
        self._db.run(
            f"UPDATE users SET {assignments}, updated_at = :updated_at WHERE id = :id",
            {**values, "updated_at": now_ts(self._clock), "id": user_id},
        )
        return self.get_by_id(user_id)

    def update_password(self, user_id: int, password_hash: str) -> bool:
        """Store a new hash and clear any pending reset token."""
        return self._touch(
            """
            UPDATE users
            SET password_hash = :password_hash, reset_token = NULL,
                reset_token_expires_at = NULL, updated_at = :now
            WHERE id = :id
            """,
            {"password_hash": password_hash, "id": user_id},
        )

    def save_reset_token(self, user_id: int, token: str, expires_at: int) -> bool:
        return self._touch(
            """
            UPDATE users
            SET reset_token = :token, reset_token_expires_at = :expires_at, updated_at = :now
            WHERE id = :id
            """,
            {"token": token, "expires_at": expires_at, "id": user_id},
        )

    def update_last_access(self, user_id: int) -> bool:
        return self._touch(
            "UPDATE users SET last_access_at = :now WHERE id = :id", {"id": user_id}
        )

    def activate(self, user_id: int) -> bool:
        return self._touch(
            "UPDATE users SET active = 1, updated_at = :now WHERE id = :id", {"id": user_id}
        )

    def deactivate(self, user_id: int) -> bool:
        return self._touch(
            "UPDATE users SET active = 0, updated_at = :now WHERE id = :id", {"id": user_id}
        )

    def delete(self, user_id: int) -> bool:
        return self._db.run("DELETE FROM users WHERE id = :id", {"id": user_id}) > 0

    def is_email_available(self, email: str, exclude_id: int | None = None) -> bool:
        row = self._db.query_one(
            "SELECT id FROM users WHERE email = :email AND id != :exclude_id",
            {"email": str(email).strip(), "exclude_id": exclude_id or 0},
        )
        return row is None

    def is_national_id_available(self, national_id: str, exclude_id: int | None = None) -> bool:
        row = self._db.query_one(
            "SELECT id FROM users WHERE national_id = :national_id AND id != :exclude_id",
            {"national_id": national_id.strip(), "exclude_id": exclude_id or 0},
        )
        return row is None

    def get_by_type(self, user_type: str, active_only: bool = True) -> list[User]:
        sql = "SELECT * FROM users WHERE user_type = :user_type"
        if active_only:
            sql += " AND active = 1"
        rows = self._db.query(f"{sql} ORDER BY name ASC", {"user_type": str(user_type)})
        return [User.model_validate(row) for row in rows]

    def search(
        self, term: str, filters: Mapping[str, Any] | None = None, limit: int = 20
    ) -> list[User]:
        """Match name, email or national id; at most ``limit`` rows."""
        where, params = _build_filters({**(filters or {}), "search": term})
        rows = self._db.query(
            f"SELECT * FROM users {where} ORDER BY name ASC LIMIT :limit",
            {**params, "limit": limit},
        )
        return [User.model_validate(row) for row in rows]

    def count_by_type(self, active_only: bool = True) -> dict[str, int]:
        where = "WHERE active = 1" if active_only else ""
        rows = self._db.query(
            f"SELECT user_type, COUNT(*) AS total FROM users {where} GROUP BY user_type"
        )
        return {row["user_type"]: int(row["total"]) for row in rows}

    def _one(self, sql: str, params: Mapping[str, Any]) -> User | None:
        row = self._db.query_one(sql, params)
        return User.model_validate(row) if row else None

    def _touch(self, sql: str, params: Mapping[str, Any]) -> bool:
        return self._db.run(sql, {**params, "now": now_ts(self._clock)}) > 0
