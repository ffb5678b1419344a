"""SQLite accessor with a prepare/bind/execute/fetch cycle and transactions."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from clinic.core.migrations import apply_migrations

LOGGER = logging.getLogger(__name__)

Params = Mapping[str, Any] | Sequence[Any]


class DatabaseError(RuntimeError):
    """Raised when SQLite rejects a statement or the connection fails."""


class IntegrityViolation(DatabaseError):
    """Raised when a statement violates a UNIQUE/FOREIGN KEY constraint."""


def _wrap(exc: sqlite3.Error) -> DatabaseError:
    if isinstance(exc, sqlite3.IntegrityError):
        return IntegrityViolation(str(exc))
    return DatabaseError(str(exc))


def _row_to_dict(row: sqlite3.Row | None) -> dict[str, Any] | None:
    return dict(row) if row is not None else None


class Database:
    """Own one SQLite connection and expose a small query API.

    One instance is meant to be built at start-up and injected into the
    repositories that need it. Each public call holds an internal lock, so the
    single-call helpers (``query``, ``query_one``, ``run``, ``insert``) are
    safe to share between worker threads. The multi-call
    ``prepare``/``bind_value``/``execute``/``fetch`` cycle keeps statement
    state on the instance and must not be interleaved across threads.
    """

    def __init__(self, path: str | Path) -> None:
        """Open the connection, creating the parent directory when needed."""
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._connection = sqlite3.connect(
                self._path, check_same_thread=False, isolation_level=None
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as exc:
            LOGGER.error("database_connect_failed", extra={"path": self._path})
            raise DatabaseError(f"Database connection failed: {exc}") from exc

        self._lock = threading.RLock()
        self._sql: str | None = None
        self._bound: dict[str, Any] = {}
        self._cursor: sqlite3.Cursor | None = None
        self._in_transaction = False

    @property
    def path(self) -> str:
        """Return the database file path (or ``:memory:``)."""
        return self._path

    def initialize(self) -> list[str]:
        """Apply pending schema migrations."""
        with self._lock:
            try:
                return apply_migrations(self._connection)
            except sqlite3.Error as exc:
                raise _wrap(exc) from exc

    # Statement cycle

    def prepare(self, sql: str) -> "Database":
        """Store a statement for later binding and execution."""
        with self._lock:
            self._sql = sql
            self._bound = {}
            self._cursor = None
        return self

    def bind_value(self, param: str, value: Any) -> "Database":
        """Bind a named parameter; a leading ``:`` is optional."""
        if self._sql is None:
            raise DatabaseError("No prepared statement to bind to")
        with self._lock:
            self._bound[param.lstrip(":")] = value
        return self

    def execute(self, params: Params | None = None) -> bool:
        """Execute the prepared statement with explicit or bound params."""
        if self._sql is None:
            raise DatabaseError("No prepared statement to execute")
        if params is None:
            effective: Params = dict(self._bound)
        elif isinstance(params, Mapping):
            effective = {str(key).lstrip(":"): value for key, value in params.items()}
        else:
            effective = params
        with self._lock:
            try:
                self._cursor = self._connection.execute(self._sql, effective)
            except sqlite3.Error as exc:
                raise _wrap(exc) from exc
        return True

    def fetch(self) -> dict[str, Any] | None:
        """Return the next row of the last execution, or ``None``."""
        with self._lock:
            if self._cursor is None:
                return None
            return _row_to_dict(self._cursor.fetchone())

    def fetch_all(self) -> list[dict[str, Any]]:
        """Return all remaining rows of the last execution."""
        with self._lock:
            if self._cursor is None:
                return []
            return [dict(row) for row in self._cursor.fetchall()]

    def fetch_column(self, index: int = 0) -> Any:
        """Return one column of the next row, or ``None`` when exhausted."""
        with self._lock:
            if self._cursor is None:
                return None
            row = self._cursor.fetchone()
            return row[index] if row is not None else None

    def row_count(self) -> int:
        """Return rows affected by the last execution."""
        with self._lock:
            return self._cursor.rowcount if self._cursor is not None else 0

    def last_insert_id(self) -> int:
        """Return rowid of the last inserted row on this connection."""
        with self._lock:
            cursor = self._cursor
            if cursor is not None and cursor.lastrowid:
                return int(cursor.lastrowid)
            row = self._connection.execute("SELECT last_insert_rowid()").fetchone()
            return int(row[0]) if row else 0

    # Single-call helpers

    def query(self, sql: str, params: Params | None = None) -> list[dict[str, Any]]:
        """Execute a statement and return all rows."""
        with self._lock:
            return [dict(row) for row in self._run(sql, params).fetchall()]

    def query_one(self, sql: str, params: Params | None = None) -> dict[str, Any] | None:
        """Execute a statement and return the first row, or ``None``."""
        with self._lock:
            return _row_to_dict(self._run(sql, params).fetchone())

    def run(self, sql: str, params: Params | None = None) -> int:
        """Execute a write statement and return the affected row count."""
        with self._lock:
            return self._run(sql, params).rowcount

    def insert(self, sql: str, params: Params | None = None) -> int:
        """Execute an INSERT and return the new row id."""
        with self._lock:
            return int(self._run(sql, params).lastrowid or 0)

    def exec(self, script: str) -> None:
        """Execute a multi-statement SQL script."""
        with self._lock:
            try:
                self._connection.executescript(script)
            except sqlite3.Error as exc:
                LOGGER.error("database_exec_failed", extra={"path": self._path})
                raise _wrap(exc) from exc

    def _run(self, sql: str, params: Params | None) -> sqlite3.Cursor:
        try:
            cursor = self._connection.execute(sql, params if params is not None else ())
        except sqlite3.Error as exc:
            raise _wrap(exc) from exc
        return cursor

    # Transactions

    @property
    def in_transaction(self) -> bool:
        """Return whether an explicit transaction is open."""
        return self._in_transaction

    def begin_transaction(self) -> bool:
        """Open a transaction; returns ``False`` when one is already open."""
        with self._lock:
            if self._in_transaction:
                return False
            self._connection.execute("BEGIN")
            self._in_transaction = True
            return True

    def commit(self) -> bool:
        """Commit the open transaction; returns ``False`` when none is open."""
        with self._lock:
            if not self._in_transaction:
                return False
            self._in_transaction = False
            self._connection.execute("COMMIT")
            return True

    def rollback(self) -> bool:
        """Roll back the open transaction; returns ``False`` when none is open."""
        with self._lock:
            if not self._in_transaction:
                return False
            self._in_transaction = False
            self._connection.execute("ROLLBACK")
            return True

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Run a block inside a transaction, rolling back on any exception."""
        with self._lock:
            started = self.begin_transaction()
            try:
                yield self
            except BaseException:
                if started:
                    self.rollback()
                raise
            if started:
                self.commit()

    def close(self) -> None:
        """Close the SQLite connection."""
        with self._lock:
            self._connection.close()

