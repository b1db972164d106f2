# src/retention/sweeper.py - v2
"""Retention sweep over terminal batches and orphaned working files.

The sweep is a single pass; scheduling it (cron, timer task) is up to the host.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, Field

from bulkdoc.config.settings import Settings
from bulkdoc.engine.scheduler import BatchEngine
from bulkdoc.storage.local_writer import tree_size

logger = logging.getLogger(__name__)


class SweepReport(BaseModel):
    """Outcome of one retention pass."""

    dry_run: bool = False
    batches_examined: int = 0
    batches_deleted: list[str] = Field(default_factory=list)
    files_deleted: list[str] = Field(default_factory=list)
    bytes_freed: int = 0
    errors: list[str] = Field(default_factory=list)


class RetentionSweeper:
    """Deletes expired batches and reaps files no batch owns."""

    def __init__(self, engine: BatchEngine, settings: Settings) -> None:
        self._engine = engine
        self._batch_ttl = timedelta(hours=settings.batch_retention_hours)
        self._file_ttl = timedelta(hours=settings.file_retention_hours)
        self._root = settings.working_root_path

    async def sweep(self, dry_run: bool = False, now: datetime | None = None) -> SweepReport:
        now = now or datetime.now(timezone.utc)
        report = SweepReport(dry_run=dry_run)
        await self._sweep_batches(report, now)
        await self._sweep_orphans(report, now)
        logger.info(
            "Retention sweep%s: %d batches examined, %d deleted, %d orphans, %d bytes freed",
            " (dry run)" if dry_run else "",
            report.batches_examined,
            len(report.batches_deleted),
            len(report.files_deleted),
            report.bytes_freed,
            extra={"data": report.model_dump(exclude={"batches_deleted", "files_deleted"})},
        )
        return report

    async def _sweep_batches(self, report: SweepReport, now: datetime) -> None:
        store = self._engine.store
        for batch_id in store.ids():
            snapshot = store.get(batch_id, include_results=False)
            if snapshot is None:
                continue
            report.batches_examined += 1
            finished = snapshot.finished_at
            if not snapshot.is_terminal or finished is None:
                continue
            if now - finished < self._batch_ttl:
                continue
            size = await asyncio.to_thread(tree_size, self._root / batch_id)
            if report.dry_run:
                report.batches_deleted.append(batch_id)
                report.bytes_freed += size
                continue
            try:
                deleted = await self._engine.delete(batch_id)
            except OSError as exc:
                report.errors.append(f"{batch_id}: {exc}")
                logger.warning("Could not delete expired batch %s: %s", batch_id, exc)
                continue
            if deleted:
                report.batches_deleted.append(batch_id)
                report.bytes_freed += size

    async def _sweep_orphans(self, report: SweepReport, now: datetime) -> None:
        writer = self._engine.writer
        known = set(self._engine.store.ids())
        cutoff = (now - self._file_ttl).timestamp()
        for name in await writer.list_dir(self._root):
            if name in known:
                continue
            entry = self._root / name
            try:
                if entry.stat().st_mtime > cutoff:
                    continue
                if report.dry_run:
                    size = await asyncio.to_thread(tree_size, entry)
                else:
                    size = await writer.remove(entry)
            except OSError as exc:
                report.errors.append(f"{name}: {exc}")
                logger.warning("Could not reap %s: %s", entry, exc)
                continue
            report.files_deleted.append(name)
            report.bytes_freed += size
