"""Logging configuration for the Drive relay."""

import contextvars
import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict

# Upload id of the resumable session handled in the current request scope
upload_id_context: contextvars.ContextVar[str | None] = contextvars.ContextVar("upload_id", default=None)

# Attributes every LogRecord carries; anything else arrived through extra={...}
_RECORD_ATTRIBUTES = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Session URLs are bearer capabilities and must never reach the log sink
_CAPABILITY_KEYS = frozenset(["session_url", "session_handle", "location"])
_REDACTED = "[redacted]"


class CloudLoggingFormatter(logging.Formatter):
    """Single-line JSON formatter for Cloud Logging ingestion.

    Carries the current upload id, any structured ``extra`` fields and, when
    present, the exception with its traceback.
    """

    SEVERITY = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARNING",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "severity": self.SEVERITY.get(record.levelno, "DEFAULT"),
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        upload_id = upload_id_context.get()
        if upload_id:
            entry["upload_id"] = upload_id

        entry.update(self._extra_fields(record))

        if record.exc_info:
            entry.update(self._exception_fields(record.exc_info))

        return json.dumps(entry, default=str, ensure_ascii=False)

    @staticmethod
    def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
        fields = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRIBUTES:
                continue
            fields[key] = _REDACTED if key in _CAPABILITY_KEYS else value
        return fields

    @staticmethod
    def _exception_fields(exc_info) -> Dict[str, str]:
        exc_type, exc_value, _ = exc_info
        return {
            "exception": "".join(traceback.format_exception(*exc_info)),
            "exception_type": exc_type.__name__ if exc_type else "Unknown",
            "exception_message": str(exc_value) if exc_value else "",
        }


def setup_logging() -> None:
    """Route application and uvicorn logs to stdout.

    ``ENV=local`` gets human-readable text at DEBUG; anything else gets JSON
    at ``LOG_LEVEL``.
    """
    from driverelay.core.config import settings

    handler = logging.StreamHandler(sys.stdout)
    if settings.ENV == "local":
        level = logging.DEBUG
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    else:
        level = logging.getLevelName(settings.LOG_LEVEL.upper())
        if not isinstance(level, int):
            level = logging.INFO
        handler.setFormatter(CloudLoggingFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        server_logger = logging.getLogger(name)
        server_logger.setLevel(level)
        server_logger.handlers.clear()
        server_logger.addHandler(handler)
        server_logger.propagate = False

    # httpx logs every request URL at INFO, session URLs included
    logging.getLogger("httpx").setLevel(logging.WARNING)
