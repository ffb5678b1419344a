"""Structured JSON logging with correlation-id and request context."""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

CORRELATION_ID_CTX: ContextVar[str] = ContextVar("correlation_id", default="")
LOG_CONTEXT_CTX: ContextVar[dict[str, Any] | None] = ContextVar("log_context", default=None)

_EXTRA_FIELDS = ("path", "method", "status_code", "user_id", "action", "route")


class JsonLogFormatter(logging.Formatter):
    """Serialize log records into compact JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        """Return JSON string for the given log record."""
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": CORRELATION_ID_CTX.get(),
        }

        context = LOG_CONTEXT_CTX.get() or {}
        for key in _EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value in (None, ""):
                value = context.get(key)
            if value not in (None, ""):
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger to emit structured JSON logs."""
    normalized_level = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(normalized_level)
    root_logger.addHandler(handler)


def set_correlation_id(correlation_id: str) -> None:
    """Store correlation id in request-local context."""
    CORRELATION_ID_CTX.set(correlation_id)


def get_correlation_id() -> str:
    """Return correlation id of the request being handled."""
    return CORRELATION_ID_CTX.get()


def bind_log_context(**fields: Any) -> None:
    """Attach fields such as ``user_id`` or ``route`` to later log lines.

    Values passed via ``extra=`` on a record take precedence.
    """
    context = dict(LOG_CONTEXT_CTX.get() or {})
    context.update(fields)
    LOG_CONTEXT_CTX.set(context)


def get_log_context() -> dict[str, Any]:
    return dict(LOG_CONTEXT_CTX.get() or {})


def clear_log_context() -> None:
    LOG_CONTEXT_CTX.set(None)
