# src/tracking/call_logger.py - v2
"""Render call logging: records every upstream attempt.

Writes RenderCallRecord entries for post-run analysis. One logger is shared
by every batch of an engine; records are filtered by batch on read.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

from bulkdoc.tracking.models import CallStatus, RenderCallRecord, RenderStats

logger = logging.getLogger(__name__)


class CallLogger:
    """Accumulates render call records."""

    def __init__(self) -> None:
        self._records: list[RenderCallRecord] = []

    def record(
        self,
        batch_id: str,
        row_index: int,
        attempt: int,
        backend: str,
        latency_ms: int,
        status: CallStatus = "success",
        error_code: str | None = None,
        output_bytes: int = 0,
    ) -> RenderCallRecord:
        """Record one render attempt.

        Args:
            batch_id: Owning batch.
            row_index: Source row being rendered.
            attempt: 1-based attempt number.
            backend: Renderer backend name (e.g. "local", "remote").
            latency_ms: Wall time of the attempt.
            status: success, retry (failed, will be retried), failed, abandoned.
            error_code: Error code of a failed attempt.
            output_bytes: Size of the rendered document.

        Returns:
            The recorded RenderCallRecord.
        """
        record = RenderCallRecord(
            call_id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            batch_id=batch_id,
            row_index=row_index,
            attempt=attempt,
            backend=backend,
            latency_ms=latency_ms,
            status=status,
            error_code=error_code,
            output_bytes=output_bytes,
        )
        self._records.append(record)
        return record

    @property
    def records(self) -> list[RenderCallRecord]:
        """All recorded calls."""
        return list(self._records)

    def for_batch(self, batch_id: str) -> list[RenderCallRecord]:
        return [r for r in self._records if r.batch_id == batch_id]

    @property
    def total_calls(self) -> int:
        """Total number of render attempts."""
        return len(self._records)

    def stats(self, batch_id: str | None = None) -> RenderStats:
        """Aggregate attempts, optionally for a single batch."""
        records = self._records if batch_id is None else self.for_batch(batch_id)
        if not records:
            return RenderStats()
        statuses = Counter(r.status for r in records)
        latencies = [r.latency_ms for r in records]
        return RenderStats(
            total_calls=len(records),
            successes=statuses["success"],
            retries=statuses["retry"],
            failures=statuses["failed"],
            abandoned=statuses["abandoned"],
            avg_latency_ms=sum(latencies) / len(latencies),
            max_latency_ms=max(latencies),
            by_error_code=dict(Counter(r.error_code for r in records if r.error_code)),
        )

    def forget(self, batch_id: str) -> None:
        """Drop the records of a deleted batch."""
        self._records = [r for r in self._records if r.batch_id != batch_id]

    def save(self, path: Path, batch_id: str | None = None) -> None:
        """Save records to a JSON Lines file."""
        records = self._records if batch_id is None else self.for_batch(batch_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            for record in records:
                f.write(json.dumps(record.model_dump(), default=str) + "\n")
