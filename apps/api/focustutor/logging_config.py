"""JSON logging for the focustutor API.

The chat session being processed is kept in a ContextVar. `SessionIdFilter`
copies it onto each record as `session_id`, and `JSONFormatter` renders records
as single-line JSON.
"""
from __future__ import annotations

import json
import logging
import sys
import time
from contextvars import ContextVar

_session_id: ContextVar[str | None] = ContextVar("session_id", default=None)


def set_session_id(session_id: str | None) -> None:
    """Set/clear the chat session id attached to log records."""
    _session_id.set(session_id)


class SessionIdFilter(logging.Filter):
    """Stamp records with the current session id. Never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "session_id", None) is None:
            record.session_id = _session_id.get()
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "level": record.levelname,
            "ts": round(time.time(), 3),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        session_id = getattr(record, "session_id", None)
        if session_id:
            base["session_id"] = session_id
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False)


def configure_logging(level: int | str = "INFO") -> logging.Logger:
    """Send root logging to stdout as JSON, with session ids; returns the "focustutor" logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(SessionIdFilter())
    handler.setFormatter(JSONFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)
    return logging.getLogger("focustutor")
