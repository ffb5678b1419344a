"""Server-side browser sessions with flash messages and idle expiry."""

from __future__ import annotations

import json
import logging
import re
import secrets
import threading
from typing import Any, Protocol

from clinic.core.clock import Clock, now_ts, system_clock
from clinic.core.config import SessionConfig
from clinic.core.database import Database
from clinic.web.request import Request
from clinic.web.response import Response

LOGGER = logging.getLogger(__name__)

CREATED_KEY = "_session_created"
FLASH_KEY = "_flash"
USER_KEY = "user"
AUTHENTICATED_KEY = "user_authenticated"
LAST_ACTIVITY_KEY = "last_activity"

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{16,128}$")


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class SessionStore(Protocol):
    """Persistence contract for session payloads keyed by id."""

    def load(self, session_id: str, not_before: int = 0) -> dict[str, Any] | None:
        """Return stored data, or ``None`` when the id is unknown or was last
        written before ``not_before``."""

    def save(self, session_id: str, data: dict[str, Any], now: int) -> None:
        """Write data for the id, replacing what was there."""

    def delete(self, session_id: str) -> None:
        """Forget the id."""

    def purge(self, before: int) -> int:
        """Drop entries last written before ``before``; return how many."""


class MemorySessionStore:
    """In-process store, mainly for tests and single-worker setups."""

    def __init__(self) -> None:
        self._items: dict[str, tuple[str, int]] = {}
        self._lock = threading.Lock()

    def load(self, session_id: str, not_before: int = 0) -> dict[str, Any] | None:
        with self._lock:
            item = self._items.get(session_id)
        if item is None or item[1] < not_before:
            return None
        return json.loads(item[0])

    def save(self, session_id: str, data: dict[str, Any], now: int) -> None:
        raw = json.dumps(data, default=str)
        with self._lock:
            self._items[session_id] = (raw, now)

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._items.pop(session_id, None)

    def purge(self, before: int) -> int:
        with self._lock:
            stale = [key for key, (_, updated_at) in self._items.items() if updated_at < before]
            for key in stale:
                del self._items[key]
        return len(stale)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._items


class SqliteSessionStore:
    """Store session payloads as JSON in the ``sessions`` table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def load(self, session_id: str, not_before: int = 0) -> dict[str, Any] | None:
        row = self._db.query_one(
            """
            SELECT data FROM sessions
            WHERE session_id = :session_id AND updated_at >= :not_before
            """,
            {"session_id": session_id, "not_before": not_before},
        )
        if row is None:
            return None
        try:
            data = json.loads(row["data"])
        except ValueError:
            LOGGER.warning("session_payload_corrupt", extra={"action": "session_load"})
            return None
        return data if isinstance(data, dict) else None

    def save(self, session_id: str, data: dict[str, Any], now: int) -> None:
        self._db.run(
            """
            INSERT INTO sessions (session_id, data, updated_at)
            VALUES (:session_id, :data, :now)
            ON CONFLICT(session_id) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            {"session_id": session_id, "data": json.dumps(data, default=str), "now": now},
        )

    def delete(self, session_id: str) -> None:
        self._db.run(
            "DELETE FROM sessions WHERE session_id = :session_id",
            {"session_id": session_id},
        )

    def purge(self, before: int) -> int:
        removed = self._db.run(
            "DELETE FROM sessions WHERE updated_at < :before", {"before": before}
        )
        if removed:
            LOGGER.info("sessions_purged", extra={"action": "session_purge"})
        return removed


class SessionManager:
    """Request-scoped view of one browser session.

    The session starts lazily on first access. Every mutation is written
    through to the store; concurrent requests sharing an id are last writer
    wins. Values must be JSON serializable.
    """

    def __init__(
        self,
        store: SessionStore,
        request: Request,
        response: Response,
        config: SessionConfig,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._request = request
        self._response = response
        self._cookie_name = config.cookie_name
        self._lifetime = config.lifetime_seconds
        self._store_ttl = config.lifetime_seconds
        self._regenerate_interval = config.regenerate_interval_seconds
        self._clock = clock
        self._started = False
        self._session_id: str | None = None
        self._data: dict[str, Any] = {}

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def lifetime(self) -> int:
        return self._lifetime

    def set_lifetime(self, seconds: int) -> None:
        """Change both cookie lifetime and the idle timeout."""
        self._lifetime = int(seconds)

    def start(self) -> None:
        """Load or create the session; later calls are no-ops."""
        if self._started:
            return

        now = now_ts(self._clock)
        # Entries idle past the lifetime are dead; they are never resumed.
        cutoff = now - self._store_ttl
        cookie_id = self._request.get_cookie(self._cookie_name) or ""
        data = None
        if _SESSION_ID_RE.match(cookie_id):
            data = self._store.load(cookie_id, not_before=cutoff)
        if data is None:
            self._store.purge(cutoff)
            self._session_id = new_session_id()
            self._data = {}
        else:
            self._session_id = cookie_id
            self._data = data

        self._started = True
        created = self._data.get(CREATED_KEY)
        if not isinstance(created, int):
            self._data[CREATED_KEY] = now
        elif now - created > self._regenerate_interval:
            self.regenerate_id()
            return
        self._data.setdefault(FLASH_KEY, {})
        self._persist()
        self._write_cookie()

    def regenerate_id(self, delete_old: bool = True) -> bool:
        """Move the data to a fresh id and reset the creation timestamp."""
        self.start()
        old_id = self._session_id
        self._session_id = new_session_id()
        self._data[CREATED_KEY] = now_ts(self._clock)
        self._data.setdefault(FLASH_KEY, {})
        if delete_old and old_id:
            self._store.delete(old_id)
        self._persist()
        self._write_cookie()
        LOGGER.debug("session_regenerated", extra={"action": "session_regenerate"})
        return True

    # Plain values

    def set(self, key: str, value: Any) -> None:
        self.start()
        self._data[key] = value
        self._persist()

    def get(self, key: str, default: Any = None) -> Any:
        self.start()
        value = self._data.get(key)
        return default if value is None else value

    def has(self, key: str) -> bool:
        self.start()
        return self._data.get(key) is not None

    def remove(self, key: str) -> None:
        self.start()
        if key in self._data:
            del self._data[key]
            self._persist()

    def all(self) -> dict[str, Any]:
        self.start()
        return dict(self._data)

    def clear(self) -> None:
        """Drop all data except pending flash messages."""
        self.start()
        flash = self._data.get(FLASH_KEY, {})
        self._data = {CREATED_KEY: self._data.get(CREATED_KEY), FLASH_KEY: flash}
        self._persist()

    def destroy(self) -> None:
        """Delete stored data, expire the cookie and return to unstarted."""
        self.start()
        if self._session_id:
            self._store.delete(self._session_id)
        if not self._response.is_sent:
            self._response.remove_cookie(self._cookie_name)
        self._data = {}
        self._session_id = None
        self._started = False

    # Flash messages

    def flash(self, key: str, value: Any) -> None:
        self.start()
        self._data.setdefault(FLASH_KEY, {})[key] = value
        self._persist()

    def get_flash(self, key: str, default: Any = None) -> Any:
        """Return a flash value and remove it."""
        self.start()
        flash = self._data.setdefault(FLASH_KEY, {})
        if key not in flash:
            return default
        value = flash.pop(key)
        self._persist()
        return value

    def has_flash(self, key: str) -> bool:
        self.start()
        return key in self._data.get(FLASH_KEY, {})

    def get_all_flash(self) -> dict[str, Any]:
        """Return every flash value and empty the flash store."""
        self.start()
        flash = dict(self._data.get(FLASH_KEY, {}))
        self._data[FLASH_KEY] = {}
        self._persist()
        return flash

    # Authenticated user

    def set_user(self, user: dict[str, Any]) -> None:
        self.start()
        self._data[USER_KEY] = user
        self._data[AUTHENTICATED_KEY] = True
        self._data[LAST_ACTIVITY_KEY] = now_ts(self._clock)
        self._persist()

    def get_user(self) -> dict[str, Any] | None:
        return self.get(USER_KEY)

    def is_authenticated(self) -> bool:
        """Check the idle timeout, refreshing activity when still valid."""
        if not self.has(AUTHENTICATED_KEY):
            return False
        now = now_ts(self._clock)
        last_activity = int(self._data.get(LAST_ACTIVITY_KEY) or 0)
        if now - last_activity > self._lifetime:
            self._data.pop(USER_KEY, None)
            self._data.pop(AUTHENTICATED_KEY, None)
            self._persist()
            LOGGER.info("session_idle_expired", extra={"action": "session_expired"})
            return False
        self._data[LAST_ACTIVITY_KEY] = now
        self._persist()
        return bool(self._data.get(AUTHENTICATED_KEY))

    def logout(self) -> None:
        """Forget the user while keeping the session itself."""
        self.start()
        for key in (USER_KEY, AUTHENTICATED_KEY, LAST_ACTIVITY_KEY):
            self._data.pop(key, None)
        self._persist()

    # Internals

    def _persist(self) -> None:
        if self._session_id is not None:
            self._store.save(self._session_id, self._data, now_ts(self._clock))

    def _write_cookie(self) -> None:
        if self._response.is_sent or self._session_id is None:
            return
        self._response.set_cookie(
            self._cookie_name,
            self._session_id,
            max_age=self._lifetime,
            secure=self._request.is_secure,
            httponly=True,
            samesite="lax",
        )
