"""Structured JSON logging; every line carries the request's correlation ID."""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_obj["correlationId"] = correlation_id

        if record.exc_info and record.exc_info[0] is not None:
            log_obj["exception"] = self.formatException(record.exc_info)
            log_obj["errorType"] = record.exc_info[0].__name__

        # Structured context passed as extra={"extra_fields": safe_log_context(...)}
        if hasattr(record, "extra_fields"):
            log_obj.update(record.extra_fields)

        return json.dumps(log_obj, default=str)


def resolve_level(value: str | None = None) -> int:
    """Map a LOG_LEVEL name to a logging level; unknown names fall back to INFO."""
    name = (value or os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
    if name not in _LEVELS:
        name = "INFO"
    return getattr(logging, name)


def get_logger(name: str) -> logging.Logger:
    """Get a logger that writes one JSON object per line to stdout."""
    logger = logging.getLogger(name)

    # Only configure once per logger name
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(resolve_level())
        logger.propagate = False

    return logger


def set_level(level: str) -> None:
    """Apply *level* to every slotbook logger created so far."""
    resolved = resolve_level(level)
    for name, logger in logging.Logger.manager.loggerDict.items():
        if name.startswith("slotbook") and isinstance(logger, logging.Logger):
            logger.setLevel(resolved)
