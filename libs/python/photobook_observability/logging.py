"""JSON logging for photobook services.

Every record carries the service name plus whatever ``log_context`` bound on
the current task (project, run, phase, page), so one project's upload drain,
generation run and variant requests can be followed in a single log stream.
"""

from __future__ import annotations

import json
import logging
import logging.config
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator


_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("photobook_log_context", default={})

# attributes every LogRecord has; anything else on a record came from ``extra``
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "asctime",
    "message",
    "observability_context",
    "taskName",
}

_QUIET_LOGGERS = {"httpx": "WARNING", "httpcore": "WARNING"}
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class ContextFilter(logging.Filter):
    """Copy the bound ``log_context`` fields and the service name onto records."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        context = _LOG_CONTEXT.get()
        if context:
            record.observability_context = context
            for key, value in context.items():
                if not hasattr(record, key):
                    setattr(record, key, value)
        if getattr(record, "service", None) is None:
            record.service = self.service_name
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; non-serialisable extras are rendered with ``str``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "observability_context", None)
        if isinstance(context, dict):
            payload.update((key, value) for key, value in context.items() if value is not None)

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_") or value is None:
                continue
            payload[key] = value if _is_json_safe(value) else str(value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=True)


def _is_json_safe(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def setup_logging(service_name: str, level: str | int | None = None) -> None:
    """Route the root logger and uvicorn through the JSON formatter.

    ``PHOTOBOOK_LOG_LEVEL`` is used when ``level`` is omitted. Calling it again
    replaces the handlers.
    """

    resolved_level = level or os.getenv("PHOTOBOOK_LOG_LEVEL", "INFO").upper()
    handlers = ["default"]
    loggers: dict[str, dict[str, Any]] = {
        name: {"handlers": handlers, "level": resolved_level, "propagate": False}
        for name in _SERVER_LOGGERS
    }
    loggers.update(
        (name, {"handlers": handlers, "level": quiet_level, "propagate": False})
        for name, quiet_level in _QUIET_LOGGERS.items()
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": "photobook_observability.logging.JsonFormatter"}},
            "filters": {
                "context": {
                    "()": "photobook_observability.logging.ContextFilter",
                    "service_name": service_name,
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "stream": sys.stdout,
                    "formatter": "json",
                    "filters": ["context"],
                }
            },
            "root": {"level": resolved_level, "handlers": handlers},
            "loggers": loggers,
        }
    )


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind fields to every record logged inside the block; ``None`` unbinds a field."""

    updated = dict(_LOG_CONTEXT.get())
    for key, value in kwargs.items():
        if value is None:
            updated.pop(key, None)
        elif isinstance(value, (int, float, bool)):
            updated[key] = value
        else:
            updated[key] = str(value)
    token = _LOG_CONTEXT.set(updated)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def current_log_context() -> Dict[str, Any]:
    return dict(_LOG_CONTEXT.get())
