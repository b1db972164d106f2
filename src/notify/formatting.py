# src/notify/formatting.py - v1
"""Human-readable durations and sizes for notification bodies."""

from __future__ import annotations

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def format_file_size(size: int | None) -> str:
    """1536 -> '1.5 KB'."""
    if not size:
        return "0 Bytes"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[unit]}"


def format_duration(seconds: float | None) -> str:
    """3725 -> '1h 2m', 75 -> '1m 15s', 9 -> '9s'."""
    if seconds is None:
        return "Calculating..."
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
