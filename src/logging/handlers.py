# src/logging/handlers.py - v2
"""Log handlers: size-rotated files and batch context stamping."""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from bulkdoc.logging.context import get_context

_SIZE = re.compile(r"^(\d+(?:\.\d+)?)\s*(B|KB|MB|GB)?$", re.IGNORECASE)
_MULTIPLIERS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}


def parse_size(size_str: str) -> int:
    """'10MB' -> 10485760. A bare number is a byte count."""
    match = _SIZE.match(size_str.strip())
    if not match:
        raise ValueError(f"Invalid size format: {size_str!r}. Use e.g. '10MB'.")
    unit = (match.group(2) or "B").upper()
    return int(float(match.group(1)) * _MULTIPLIERS[unit])


class ContextFilter(logging.Filter):
    """Stamp batch_id, row_index and stage onto every record.

    The values are captured when the record is created, so handlers that
    format later (queues, buffering) still see the emitting task's context.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "batch_id"):
            ctx = get_context()
            record.batch_id = ctx.batch_id
            record.row_index = ctx.row_index
            record.stage = ctx.stage
        return True


def create_rotating_handler(
    log_file: str | Path,
    rotation: str = "10MB",
    retention: int = 5,
) -> RotatingFileHandler:
    """Rotating file handler; the file is opened on the first record."""
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=parse_size(rotation),
        backupCount=retention,
        encoding="utf-8",
        delay=True,
    )
    handler.addFilter(ContextFilter())
    return handler
