# src/tracking/models.py - v2
"""Tracking domain models: RenderCallRecord and RenderStats."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

CallStatus = Literal["success", "retry", "failed", "abandoned"]


class RenderCallRecord(BaseModel):
    """One attempt at rendering one record."""

    call_id: str
    timestamp: datetime
    batch_id: str
    row_index: int
    attempt: int
    backend: str
    latency_ms: int
    status: CallStatus
    error_code: str | None = None
    output_bytes: int = 0


class RenderStats(BaseModel):
    """Aggregated view over recorded render attempts."""

    total_calls: int = 0
    successes: int = 0
    retries: int = 0
    failures: int = 0
    abandoned: int = 0
    avg_latency_ms: float = 0.0
    max_latency_ms: int = 0
    by_error_code: dict[str, int] = {}
