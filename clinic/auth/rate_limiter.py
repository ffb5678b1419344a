"""Login brute-force protection keyed by (email, client ip)."""

from __future__ import annotations

import logging

from clinic.api.errors import RateLimitedError
from clinic.core.clock import Clock, now_ts, system_clock
from clinic.core.database import Database

LOGGER = logging.getLogger(__name__)


def _key(email: str, client_ip: str) -> dict[str, str]:
    return {"email": email.strip().lower(), "client_ip": client_ip.strip() or "unknown"}


class LoginRateLimiter:
    """Lock a principal out after repeated failures inside a time window."""

    def __init__(
        self,
        database: Database,
        *,
        max_attempts: int,
        window_seconds: int,
        lock_seconds: int,
        clock: Clock = system_clock,
    ) -> None:
        """Initialize limiter policy parameters."""
        self._db = database
        self._clock = clock
        self._max_attempts = max(1, int(max_attempts))
        self._window_seconds = max(1, int(window_seconds))
        self._lock_seconds = max(1, int(lock_seconds))

    def assert_allowed(self, *, email: str, client_ip: str) -> None:
        """Raise ``RateLimitedError`` while the principal is locked."""
        now = now_ts(self._clock)
        key = _key(email, client_ip)
        with self._db.transaction():
            row = self._db.query_one(
                """
                SELECT failed_attempts, first_failed_at, locked_until
                FROM auth_login_attempts
                WHERE email = :email AND client_ip = :client_ip
                """,
                key,
            )
            if row is None:
                return

            locked_until = int(row["locked_until"] or 0)
            if locked_until > now:
                retry_after = locked_until - now
                LOGGER.warning("login_rate_limited", extra={"action": "login_rate_limited"})
                raise RateLimitedError(
                    f"Too many login attempts. Retry after {retry_after} seconds."
                )

            first_failed_at = int(row["first_failed_at"] or 0)
            if first_failed_at and (now - first_failed_at) > self._window_seconds:
                self._db.run(
                    "DELETE FROM auth_login_attempts WHERE email = :email AND client_ip = :client_ip",
                    key,
                )

    def record_success(self, *, email: str, client_ip: str) -> None:
        """Reset limiter state after a successful login."""
        self._db.run(
            "DELETE FROM auth_login_attempts WHERE email = :email AND client_ip = :client_ip",
            _key(email, client_ip),
        )

    def record_failure(self, *, email: str, client_ip: str) -> None:
        """Count a failed login and lock once the threshold is reached."""
        now = now_ts(self._clock)
        key = _key(email, client_ip)
        with self._db.transaction():
            row = self._db.query_one(
                """
                SELECT failed_attempts, first_failed_at
                FROM auth_login_attempts
                WHERE email = :email AND client_ip = :client_ip
                """,
                key,
            )

            if row is None:
                failed_attempts = 1
                first_failed_at = now
            else:
                previous_first = int(row["first_failed_at"] or 0)
                if previous_first and (now - previous_first) > self._window_seconds:
                    failed_attempts = 1
                    first_failed_at = now
                else:
                    failed_attempts = int(row["failed_attempts"] or 0) + 1
                    first_failed_at = previous_first or now

            locked_until = (
                now + self._lock_seconds if failed_attempts >= self._max_attempts else 0
            )

            self._db.run(
                """
                INSERT INTO auth_login_attempts(
                  email, client_ip, failed_attempts, first_failed_at, last_failed_at, locked_until
                ) VALUES (:email, :client_ip, :failed_attempts, :first_failed_at, :now, :locked_until)
                ON CONFLICT(email, client_ip) DO UPDATE SET
                  failed_attempts = excluded.failed_attempts,
                  first_failed_at = excluded.first_failed_at,
                  last_failed_at = excluded.last_failed_at,
                  locked_until = excluded.locked_until
                """,
                {
                    **key,
                    "failed_attempts": failed_attempts,
                    "first_failed_at": first_failed_at,
                    "now": now,
                    "locked_until": locked_until,
                },
            )
