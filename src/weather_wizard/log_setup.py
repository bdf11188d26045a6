"""Structured console logging; stdout stays free for the forecast table."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

from .redaction import sanitize_text

# Optional ``extra=`` fields copied into each JSON line when present.
CONTEXT_FIELDS = ("provider", "city", "day", "outcome")


class JsonConsoleFormatter(logging.Formatter):
    """One JSON object per record, with API keys scrubbed from the message."""

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": sanitize_text(record.getMessage()),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                event[field] = sanitize_text(str(getattr(value, "value", value)))
        if record.exc_info:
            event["exception"] = sanitize_text(self.formatException(record.exc_info))
        return json.dumps(event, default=str)


def setup_logger(
    name: str = "weather_wizard",
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Create the process logger, writing to stderr unless ``stream`` is given."""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonConsoleFormatter())
    logger.addHandler(handler)
    return logger
