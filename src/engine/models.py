# src/engine/models.py - v1
"""Engine-level read models."""

from __future__ import annotations

from pydantic import BaseModel

from bulkdoc.rendering.rate_limiter import LimiterStats
from bulkdoc.tracking.models import RenderStats


class EngineStats(BaseModel):
    """Point-in-time view of the engine for health and monitoring surfaces."""

    batches: int
    by_status: dict[str, int]
    active_batches: int
    max_parallel_batches: int
    rate_limiter: LimiterStats
    render_calls: RenderStats
