"""Append-only audit trail of security-relevant actions."""

from __future__ import annotations

import json
import logging
from typing import Any

from clinic.core.clock import Clock, now_ts, system_clock
from clinic.core.database import Database, DatabaseError

LOGGER = logging.getLogger(__name__)


def _encode(data: Any) -> str | None:
    if data is None:
        return None
    return json.dumps(data, ensure_ascii=False, default=str)


class AuditLogRepository:
    """Write and read ``audit_log`` rows."""

    def __init__(self, database: Database, clock: Clock = system_clock) -> None:
        self._db = database
        self._clock = clock

    def record(
        self,
        user_id: int | None,
        action: str,
        *,
        affected_table: str | None = None,
        affected_record_id: int | None = None,
        old_data: Any = None,
        new_data: Any = None,
        ip_address: str | None = None,
    ) -> bool:
        """Store one audit entry; failures are logged and reported as ``False``."""
        try:
            self._db.insert(
                """
                INSERT INTO audit_log (
                    user_id, action, affected_table, affected_record_id,
                    old_data, new_data, ip_address, created_at
                ) VALUES (
                    :user_id, :action, :affected_table, :affected_record_id,
                    :old_data, :new_data, :ip_address, :created_at
                )
                """,
                {
                    "user_id": user_id,
                    "action": action,
                    "affected_table": affected_table,
                    "affected_record_id": affected_record_id,
                    "old_data": _encode(old_data),
                    "new_data": _encode(new_data),
                    "ip_address": ip_address,
                    "created_at": now_ts(self._clock),
                },
            )
        except DatabaseError:
            LOGGER.exception("audit_record_failed", extra={"action": action, "user_id": user_id})
            return False
        return True

    def list_for_user(self, user_id: int, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent entries first, with JSON columns decoded."""
        rows = self._db.query(
            """
            SELECT * FROM audit_log
            WHERE user_id = :user_id
            ORDER BY created_at DESC, id DESC
            LIMIT :limit
            """,
            {"user_id": user_id, "limit": limit},
        )
        for row in rows:
            for column in ("old_data", "new_data"):
                if row[column] is not None:
                    row[column] = json.loads(row[column])
        return rows
