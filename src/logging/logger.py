# src/logging/logger.py - v3
"""Logger setup with JSON and text formatters.

Both formatters read the batch context stamped by ContextFilter and fall
back to the live context variables for records that bypassed the filter.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from bulkdoc.logging.context import LogContext, get_context
from bulkdoc.logging.handlers import ContextFilter, create_rotating_handler

if TYPE_CHECKING:
    from bulkdoc.config.settings import Settings

ROOT_LOGGER = "bulkdoc"


def _record_context(record: logging.LogRecord) -> LogContext:
    if hasattr(record, "batch_id"):
        return LogContext(
            batch_id=record.batch_id,  # type: ignore[attr-defined]
            row_index=getattr(record, "row_index", None),
            stage=getattr(record, "stage", None),
        )
    return get_context()


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, context, data."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _record_time(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = _record_context(record).as_dict()
        if context:
            entry["context"] = context
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable single line for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = _record_context(record)
        parts = [
            _record_time(record).strftime("%Y-%m-%d %H:%M:%S"),
            f"[{record.levelname:8s}]",
            record.name,
        ]
        if ctx.batch_id:
            parts.append(f"[{ctx.batch_id}]")
        if ctx.row_index is not None:
            parts.append(f"(row {ctx.row_index})")
        if ctx.stage:
            parts.append(f"<{ctx.stage}>")
        parts.append(f"- {record.getMessage()}")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 5,
) -> logging.Logger:
    """Configure the bulkdoc logger tree and return its root.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: "json" or "text".
        log_file: Optional log file, rotated at ``rotation`` size.
        rotation: Max file size before rotation (e.g. "10MB").
        retention: Number of rotated files to keep.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()

    console = logging.StreamHandler(sys.stdout)
    console.addFilter(ContextFilter())
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        file_handler = create_rotating_handler(log_file, rotation=rotation, retention=retention)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    return root


def setup_logging_from_settings(settings: Settings, level: str | None = None) -> logging.Logger:
    """Apply the LOG_* settings; ``level`` overrides LOG_LEVEL."""
    return setup_logging(
        level=level or settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
