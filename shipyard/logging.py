"""Structured logging helpers: JSON lines with deployment context."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

# Fields callers may attach via ``extra=`` to tie a record to one deployment
CONTEXT_FIELDS = ("org", "env", "app", "revision", "stage", "working_dir")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = str(value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def get_logger(name: str = "shipyard") -> logging.Logger:
    logger = logging.getLogger(name)
    root = logging.getLogger("shipyard")
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(JsonFormatter())
        root.addHandler(handler)
        root.setLevel(logging.INFO)
    return logger


def configure_logging(level: str = "INFO") -> None:
    """Set the level of every ``shipyard.*`` logger."""
    get_logger().setLevel(level.upper())
