"""
Structured JSON logging.

Every record is a single JSON object on stdout:

    {"ts": 1712345678901, "level": "info", "component": "devserver",
     "event": "devserver.start", "session_id": "...", ...}

Components obtain a logger with get_logger(component, **context); context
fields are attached to every event the logger emits.
"""

import json
import logging
import os
import sys
import traceback
from typing import Any

ROOT_LOGGER_NAME = "livepreview"

_configured = False


class JSONFormatter(logging.Formatter):
    """Render records produced by StructuredLogger as one-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": int(record.created * 1000),
            "level": record.levelname.lower(),
            "component": getattr(record, "component", record.name),
            "event": getattr(record, "event", record.getMessage()),
        }
        payload.update(getattr(record, "fields", {}))

        if record.exc_info:
            payload.setdefault("exc_trace", "".join(traceback.format_exception(*record.exc_info)))

        return json.dumps(payload, default=str)


class StructuredLogger:
    """Thin wrapper emitting event-name records with keyword fields."""

    def __init__(self, component: str, **context: Any):
        self.component = component
        self.context = context
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")

    def bind(self, **context: Any) -> "StructuredLogger":
        """Return a logger carrying additional context fields."""
        return StructuredLogger(self.component, **{**self.context, **context})

    def _log(self, level: int, event: str, exc: BaseException | None, fields: dict[str, Any]):
        if not self._logger.isEnabledFor(level):
            return

        merged = {**self.context, **fields}
        if exc is not None:
            merged["exc_type"] = type(exc).__name__
            merged["exc_message"] = str(exc)

        self._logger.log(
            level,
            event,
            extra={"component": self.component, "event": event, "fields": merged},
        )

    def debug(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self._log(logging.DEBUG, event, exc, fields)

    def info(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self._log(logging.INFO, event, exc, fields)

    def warn(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self._log(logging.WARNING, event, exc, fields)

    warning = warn

    def error(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self._log(logging.ERROR, event, exc, fields)


def configure_logging(level: str | None = None) -> None:
    """Install the JSON handler on the package logger. Safe to call repeatedly."""
    global _configured

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    resolved = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    logger.setLevel(getattr(logging, resolved, logging.INFO))

    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    _configured = True


def get_logger(component: str, **context: Any) -> StructuredLogger:
    """Get a structured logger for a component."""
    return StructuredLogger(component, **context)
