"""
Structured JSON logging.

Every record carries the correlation id of the turn or sync cycle that produced
it and, when bound, the session id. Utterance text never reaches the output:
fields named in REDACTED_FIELDS are replaced by their length.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from bizadvisor.config import get_settings

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
session_id_var: ContextVar[str | None] = ContextVar("session_id", default=None)

REDACTED_FIELDS = frozenset({"text", "utterance", "transcript"})

# Attributes of every LogRecord; anything else arrived through extra=...
_RECORD_ATTRIBUTES = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}
_BASE_KEYS = ("timestamp", "level", "logger", "message")


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, var in (("correlation_id", correlation_id_var), ("session_id", session_id_var)):
            value = var.get()
            if value:
                log_data[key] = value

        for k, v in record.__dict__.items():
            if k in _RECORD_ATTRIBUTES:
                continue
            if k in REDACTED_FIELDS:
                log_data[f"{k}_length"] = len(v) if isinstance(v, str) else None
            elif k in _BASE_KEYS:
                log_data[f"extra_{k}"] = v
            else:
                log_data[k] = v

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


def get_logger(name: str) -> logging.Logger:
    """Get a module logger that emits structured JSON.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.propagate = False

    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    return logger


def setup_logging() -> None:
    """Route every logger through the structured formatter at the configured level."""
    settings = get_settings()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level.upper())
    root_logger.handlers = [handler]

    # SQL echo is opt-in through SQLALCHEMY_LOG_LEVEL=INFO/DEBUG.
    sqlalchemy_level = os.getenv("SQLALCHEMY_LOG_LEVEL", "").strip().upper() or "WARNING"
    for name in ("sqlalchemy.engine", "sqlalchemy.pool", "sqlalchemy.dialects"):
        logging.getLogger(name).setLevel(sqlalchemy_level)

    for name in ("aiosqlite", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
