"""
Log Formatters and Setup

Text output for humans reading CI logs, JSON output for log pipelines.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TextIO

from src.common.logging.sanitizer import SanitizingFilter

LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys() | {"message", "asctime"}
)


class JsonFormatter(logging.Formatter):
    """Formats each record as a single JSON object, extras included."""

    def __init__(self, include_extra_fields: bool = True):
        super().__init__()
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_extra_fields:
            extra_fields = {
                key: value
                for key, value in vars(record).items()
                if key not in _RESERVED_ATTRS and not key.startswith("_")
            }
            if extra_fields:
                log_data["context"] = extra_fields

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(
    level: str = "info",
    fmt: str = "text",
    secrets: list[str] | None = None,
    stream: TextIO | None = None,
) -> logging.Handler:
    """
    Configure the root logger for a sync run.

    Replaces existing root handlers with a single stream handler that
    sanitizes every record before formatting it.

    Args:
        level: One of debug, info, warn, error
        fmt: "json" or "text"
        secrets: Literal credential values to redact
        stream: Output stream (stderr if not specified)

    Returns:
        The installed handler
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    handler.addFilter(SanitizingFilter(secrets=secrets))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(LEVELS.get(level.lower(), logging.INFO))

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return handler
