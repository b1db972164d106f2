# src/engine/scheduler.py - v2
"""Batch engine: drives a batch from submission to a terminal state.

Per batch: a producer task feeds records in source order into a bounded
queue and a pool of workers renders them. Results land in the state store
under the batch lock; the archive is built after every worker has retired,
and the notifier is called once on a terminal non-cancelled state.

Cancellation is cooperative. A pending batch is cancelled immediately. For a
processing batch no new record is dispatched, in-flight records finish, and
the batch becomes ``cancelled`` once the pool drains.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from collections.abc import AsyncIterator, Mapping
from datetime import datetime, timezone
from pathlib import Path

from bulkdoc.config.settings import Settings
from bulkdoc.core.errors import (
    ArchiveError,
    ArchiveUnavailable,
    BatchNotFound,
    BulkDocError,
    EngineFailure,
    NotificationError,
    SchemaMismatch,
    describe_error,
)
from bulkdoc.core.models import (
    Batch,
    BatchSnapshot,
    BatchStatus,
    DocumentResult,
    OutputOptions,
    Page,
)
from bulkdoc.engine.models import EngineStats
from bulkdoc.engine.state_store import BatchStateStore
from bulkdoc.logging.context import set_batch_context, set_row_context, set_stage
from bulkdoc.notify.base_notifier import BaseNotifier
from bulkdoc.notify.models import (
    BatchCompletedEvent,
    BatchFailedEvent,
    BatchProgressEvent,
    DownloadLink,
    NotificationTarget,
)
from bulkdoc.records.models import SourceRecord
from bulkdoc.records.parser import RecordStream
from bulkdoc.rendering.base_renderer import BaseRenderer
from bulkdoc.rendering.rate_limiter import RateLimiter
from bulkdoc.rendering.retry import RetryPolicy
from bulkdoc.rendering.service import RenderAbandoned, RenderService
from bulkdoc.storage.archive import ArchiveBuilder
from bulkdoc.storage.base_output_writer import BaseOutputWriter
from bulkdoc.storage.layout import (
    archive_path,
    batch_dir,
    calls_log_path,
    document_name,
    document_path,
    ensure_batch_directories,
)
from bulkdoc.storage.local_writer import LocalWriter
from bulkdoc.template.models import TemplateModel
from bulkdoc.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)

ERROR_SUMMARY_SIZE = 5


def generate_batch_id() -> str:
    """Batch id: yyyymmdd_hhmmss_<uuid8>, sortable by creation time."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{ts}_{uuid.uuid4().hex[:8]}"


class _BatchRun:
    """Per-batch execution state private to the engine."""

    def __init__(
        self,
        batch_id: str,
        template: TemplateModel,
        records: RecordStream,
        options: OutputOptions,
        width: int,
        target: NotificationTarget | None,
        working_dir: Path,
    ) -> None:
        self.batch_id = batch_id
        self.template = template
        self.records = records
        self.options = options
        self.width = width
        self.target = target
        self.working_dir = working_dir
        self.cancel = asyncio.Event()
        self.policy = RetryPolicy.from_ms(
            options.retry_attempts or 0, options.retry_base_delay_ms or 1,
        )
        self.thresholds_sent: set[int] = set()
        self.task: asyncio.Task[None] | None = None


class BatchEngine:
    """Orchestrates batches over one shared rate limiter and state store."""

    def __init__(
        self,
        settings: Settings,
        renderer: BaseRenderer | None = None,
        notifier: BaseNotifier | None = None,
        store: BatchStateStore | None = None,
        limiter: RateLimiter | None = None,
        writer: BaseOutputWriter | None = None,
        archive_builder: ArchiveBuilder | None = None,
        call_logger: CallLogger | None = None,
    ) -> None:
        if renderer is None:
            from bulkdoc.rendering.renderer_factory import create_renderer

            renderer = create_renderer(settings)
        self._settings = settings
        self._limiter = limiter or RateLimiter(
            settings.rate_limit_requests, settings.rate_limit_window_ms,
        )
        self._render = RenderService(
            renderer, self._limiter, call_logger, timeout_s=settings.render_timeout_s,
        )
        self._notifier = notifier
        self._store = store or BatchStateStore(channel_size=settings.progress_channel_size)
        self._writer = writer or LocalWriter()
        self._archiver = archive_builder or ArchiveBuilder()
        self._root = settings.working_root_path
        self._batch_slots = asyncio.Semaphore(settings.max_parallel_batches)
        self._runs: dict[str, _BatchRun] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._closed = False

    # === Properties ===

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> BatchStateStore:
        return self._store

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def render_service(self) -> RenderService:
        return self._render

    @property
    def notifier(self) -> BaseNotifier | None:
        return self._notifier

    @property
    def writer(self) -> BaseOutputWriter:
        return self._writer

    @property
    def working_root(self) -> Path:
        return self._root

    # === Sizing ===

    def pool_width(self, options: OutputOptions) -> int:
        """Workers per batch: the requested size, capped by config and rate budget."""
        requested = options.batch_size or self._settings.default_batch_size
        return max(1, min(requested, self._settings.max_concurrent_per_batch, self._limiter.requests))

    def estimate_seconds(self, total: int, width: int) -> float:
        """Expected duration; the rate budget sets a floor when it is the bottleneck."""
        if total <= 0:
            return 0.0
        by_workers = math.ceil(total / width) * self._settings.estimated_seconds_per_document
        windows = math.ceil(total / self._limiter.requests)
        by_rate = windows * self._limiter.window_ms / 1000.0 if windows > 1 else 0.0
        return max(by_workers, by_rate)

    # === Submission surface ===

    async def submit(
        self,
        template: TemplateModel,
        records: RecordStream,
        options: OutputOptions | Mapping[str, object] | None = None,
        target: NotificationTarget | None = None,
        batch_id: str | None = None,
    ) -> BatchSnapshot:
        """Validate, create a pending batch and schedule it.

        Raises:
            SchemaMismatch: A required placeholder has no column (no batch is created).
            InvalidOptions: Options fail validation.
        """
        if self._closed:
            raise EngineFailure("Engine is closed")
        if not isinstance(options, OutputOptions):
            options = OutputOptions.parse(options)
        options = options.with_defaults(
            self._settings.default_batch_size,
            self._settings.default_retry_attempts,
            self._settings.default_retry_base_delay_ms,
        )

        missing = template.missing_from(records.headers)
        if missing:
            raise SchemaMismatch(missing, f"Template requires missing columns: {', '.join(missing)}")
        if len(records) == 0:
            raise SchemaMismatch([], "No records to render")
        if records.consumed:
            raise EngineFailure("Record stream was already consumed")

        batch_id = batch_id or generate_batch_id()
        width = self.pool_width(options)
        working_dir = batch_dir(self._root, batch_id)
        batch = Batch(
            id=batch_id,
            total=len(records),
            options=options,
            template_name=template.name,
            estimated_seconds=self.estimate_seconds(len(records), width),
            error_limit=self._settings.error_ring_size,
            working_dir=working_dir,
        )
        snapshot = await self._store.create(batch)

        run = _BatchRun(batch_id, template, records, options, width, target, working_dir)
        self._runs[batch_id] = run
        run.task = asyncio.create_task(self._run(run), name=f"batch-{batch_id}")
        logger.info(
            "Submitted batch %s: %d records, format=%s, width=%d, estimate=%.0fs",
            batch_id, len(records), options.format, width, batch.estimated_seconds,
        )
        return snapshot

    def status(self, batch_id: str) -> BatchSnapshot:
        """Full snapshot with results in source order.

        Raises:
            BatchNotFound: Unknown id.
        """
        return self._store.require(batch_id)

    async def cancel(self, batch_id: str) -> BatchSnapshot:
        """Request cancellation; terminal batches are returned unchanged.

        Raises:
            BatchNotFound: Unknown id.
        """
        def request(batch: Batch) -> None:
            if batch.status == "pending":
                batch.cancel_requested = True
                batch.transition("cancelled")
            elif batch.status == "processing":
                batch.cancel_requested = True

        await self._store.update(batch_id, request)
        run = self._runs.get(batch_id)
        if run is not None:
            run.cancel.set()
        snapshot = self._store.require(batch_id)
        logger.info("Cancel requested for batch %s (status=%s)", batch_id, snapshot.status)
        return snapshot

    def download(self, batch_id: str) -> Path:
        """Archive path of a completed batch.

        Raises:
            BatchNotFound: Unknown id.
            ArchiveUnavailable: Not completed, or the archive is gone.
        """
        snapshot = self._store.require(batch_id, include_results=False)
        if snapshot.status != "completed" or snapshot.archive_path is None:
            raise ArchiveUnavailable(f"Batch {batch_id} has no archive (status={snapshot.status})")
        if not snapshot.archive_path.is_file():
            raise ArchiveUnavailable(f"Archive of batch {batch_id} is no longer on disk")
        return snapshot.archive_path

    async def iter_archive(self, batch_id: str, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        """Stream the archive of a completed batch."""
        path = self.download(batch_id)
        async for chunk in self._writer.iter_chunks(path, chunk_size):
            yield chunk

    async def delete(self, batch_id: str) -> bool:
        """Remove a batch and its working directory; False if unknown.

        A running batch is cancelled and drained first.
        """
        snapshot = self._store.get(batch_id, include_results=False)
        if snapshot is None:
            return False
        if not snapshot.is_terminal:
            if not (await self.cancel(batch_id)).is_terminal:
                await self.wait(batch_id)
        working_dir = batch_dir(self._root, batch_id)
        freed = await self._writer.remove(working_dir)
        deleted = await self._store.delete(batch_id)
        self._render.call_logger.forget(batch_id)
        self._runs.pop(batch_id, None)
        logger.info("Deleted batch %s (%d bytes freed)", batch_id, freed)
        return deleted

    def list(self, status: BatchStatus | None = None, limit: int = 50, offset: int = 0) -> Page:
        return self._store.list(status=status, limit=limit, offset=offset)

    async def wait(self, batch_id: str, timeout: float | None = None) -> BatchSnapshot:
        """Wait until the batch is terminal and return its final snapshot.

        Raises:
            BatchNotFound: Unknown id.
            asyncio.TimeoutError: ``timeout`` elapsed first.
        """
        self._store.require(batch_id, include_results=False)
        run = self._runs.get(batch_id)
        # a queued task exits as soon as its batch is cancelled
        if run is not None and run.task is not None and not run.task.done():
            await asyncio.wait_for(asyncio.shield(run.task), timeout)
        return self._store.require(batch_id)

    async def subscribe(self, batch_id: str) -> AsyncIterator[BatchSnapshot]:
        """Yield progress snapshots until the batch is terminal."""
        channel = self._store.subscribe(batch_id)
        async for snapshot in channel:
            yield snapshot

    def stats(self) -> EngineStats:
        return EngineStats(
            batches=len(self._store),
            by_status=self._store.counts_by_status(),
            active_batches=sum(
                1 for r in self._runs.values() if r.task is not None and not r.task.done()
            ),
            max_parallel_batches=self._settings.max_parallel_batches,
            rate_limiter=self._limiter.stats(),
            render_calls=self._render.call_logger.stats(),
        )

    async def close(self) -> None:
        """Stop running batches (they end as failed) and release collaborators."""
        self._closed = True
        tasks = [r.task for r in self._runs.values() if r.task is not None and not r.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self._render.close()
        if self._notifier is not None:
            await self._notifier.close()
        logger.info("Engine closed (%d running batches stopped)", len(tasks))

    # === Batch execution ===

    async def _run(self, run: _BatchRun) -> None:
        set_batch_context(run.batch_id, stage="queued")
        self._send_progress(run, self._store.require(run.batch_id, include_results=False))
        try:
            if not await self._acquire_slot(run):
                logger.info("Batch %s was cancelled while queued", run.batch_id)
                return
            try:
                if not await self._store.update(run.batch_id, _start):
                    logger.info("Batch %s was cancelled before it started", run.batch_id)
                    return
                set_stage("processing")
                try:
                    await self._prepare(run)
                    await self._pipeline(run)
                    await self._finish(run)
                except BulkDocError as exc:
                    await self._fail(run, exc)
                except Exception as exc:
                    logger.exception("Unexpected engine error in batch %s", run.batch_id)
                    await self._fail(run, exc)
            finally:
                self._batch_slots.release()
        except asyncio.CancelledError:
            await self._abort(run)
            raise
        except BatchNotFound:
            logger.info("Batch %s was deleted while running", run.batch_id)

    async def _acquire_slot(self, run: _BatchRun) -> bool:
        """Take a batch slot, or return False if the batch is cancelled first."""
        if run.cancel.is_set():
            return False
        slot = asyncio.ensure_future(self._batch_slots.acquire())
        cancelled = asyncio.ensure_future(run.cancel.wait())
        try:
            await asyncio.wait({slot, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            if slot.done() and not slot.cancelled():
                self._batch_slots.release()
            slot.cancel()
            raise
        finally:
            cancelled.cancel()
        if not slot.done():
            slot.cancel()
            return False
        # a slot granted together with the cancel is used; _start sees the status
        return True

    async def _prepare(self, run: _BatchRun) -> None:
        await asyncio.to_thread(ensure_batch_directories, run.working_dir)
        await self._render.prepare(run.template, run.options)

    async def _pipeline(self, run: _BatchRun) -> None:
        queue: asyncio.Queue[SourceRecord | None] = asyncio.Queue(maxsize=run.width)

        async def produce() -> None:
            for record in run.records:
                if run.cancel.is_set():
                    break
                await queue.put(record)
            for _ in range(run.width):
                await queue.put(None)

        async def work(worker: int) -> None:
            while True:
                item = await queue.get()
                if item is None:
                    return
                if run.cancel.is_set():
                    continue
                await self._process(run, item)

        # any failure cancels the producer and every worker
        try:
            async with asyncio.TaskGroup() as pool:
                pool.create_task(produce())
                for i in range(run.width):
                    pool.create_task(work(i))
        except ExceptionGroup as group:
            raise group.exceptions[0] from None

    async def _process(self, run: _BatchRun, record: SourceRecord) -> None:
        row = record.row_index
        set_row_context(row, stage="render")
        try:
            outcome = await self._render.render(
                run.template, record.values, run.options, row,
                batch_id=run.batch_id, policy=run.policy, cancel=run.cancel,
            )
        except RenderAbandoned:
            logger.info("Row %d skipped after cancellation", row)
            return
        except BulkDocError as exc:
            logger.warning("Row %d failed: %s", row, describe_error(exc))
            result = DocumentResult(row_index=row, status="failed", error=describe_error(exc))
        except Exception as exc:
            logger.exception("Row %d failed unexpectedly", row)
            result = DocumentResult(row_index=row, status="failed", error=describe_error(exc))
        else:
            set_stage("write")
            total = len(run.records)
            path = document_path(run.working_dir, row, total, run.options.extension)
            try:
                size = await self._writer.write(path, outcome.content)
            except OSError as exc:
                logger.warning("Row %d could not be written: %s", row, exc)
                result = DocumentResult(
                    row_index=row, status="failed", error=f"WRITE_ERROR: {exc}",
                    attempts=outcome.attempts,
                )
            else:
                result = DocumentResult(
                    row_index=row,
                    status="completed",
                    file_name=document_name(row, total, run.options.extension),
                    file_path=path,
                    file_size=size,
                    attempts=outcome.attempts,
                )

        def append(batch: Batch) -> BatchSnapshot:
            batch.add_result(result)
            return batch.snapshot(include_results=False)

        snapshot = await self._store.update(run.batch_id, append)
        set_row_context(None)
        self._check_thresholds(run, snapshot)

    async def _finish(self, run: _BatchRun) -> None:
        snapshot = self._store.require(run.batch_id)
        if snapshot.cancel_requested:
            await self._store.update(run.batch_id, lambda b: b.transition("cancelled"))
            logger.info(
                "Batch %s cancelled after %d of %d records",
                run.batch_id, snapshot.totals.processed, snapshot.totals.total,
            )
            return

        totals = snapshot.totals
        if totals.processed < totals.total:
            raise EngineFailure(
                f"Record source yielded {totals.processed} of {totals.total} records"
            )
        if totals.completed == 0:
            await self._fail(
                run, None, f"All {totals.total} documents failed",
            )
            return

        set_stage("archive")
        documents = [
            (r.row_index, r.file_path) for r in snapshot.results
            if r.status == "completed" and r.file_path is not None
        ]
        destination = archive_path(run.working_dir)
        report = await self._archiver.build_async(
            documents, totals.total, run.options.extension, destination,
        )

        def complete(batch: Batch) -> bool:
            if batch.cancel_requested:
                batch.transition("cancelled")
                return False
            batch.archive_path = report.path
            batch.transition("completed")
            return True

        if not await self._store.update(run.batch_id, complete):
            await self._writer.remove(destination)
            logger.info("Batch %s cancelled during archiving", run.batch_id)
            return

        await self._save_call_log(run)
        final = self._store.require(run.batch_id, include_results=False)
        logger.info(
            "Batch %s completed: %d/%d documents, archive %d bytes",
            run.batch_id, totals.completed, totals.total, report.size,
        )
        url = f"{self._settings.download_base_url.rstrip('/')}/{run.batch_id}/download"
        await self._notify(run, BatchCompletedEvent(
            summary=final.summary(),
            archive_name=report.path.name,
            archive_size=report.size,
            download_links=(DownloadLink(file_name=report.path.name, url=url, size=report.size),),
        ))

    async def _fail(
        self,
        run: _BatchRun,
        error: BaseException | None,
        message: str | None = None,
    ) -> None:
        if message is None:
            message = describe_error(error) if error is not None else "ENGINE_ERROR"
        text = message
        if isinstance(error, ArchiveError):
            logger.error("Archive failed for batch %s: %s", run.batch_id, text)
        else:
            logger.error("Batch %s failed: %s", run.batch_id, text)

        def fail(batch: Batch) -> bool:
            batch.add_error(text)
            if batch.status == "processing":
                batch.transition("failed")
                return True
            return False

        if not await self._store.update(run.batch_id, fail):
            return
        await self._save_call_log(run)
        final = self._store.require(run.batch_id, include_results=False)
        await self._notify(run, BatchFailedEvent(
            summary=final.summary(),
            error_summary=final.errors[-ERROR_SUMMARY_SIZE:],
            error_count=len(final.errors),
        ))

    async def _abort(self, run: _BatchRun) -> None:
        """Engine shutdown: settle a batch whose task is being cancelled."""
        def settle(batch: Batch) -> None:
            if batch.status == "pending":
                batch.transition("cancelled")
            elif batch.status == "processing":
                batch.add_error("ENGINE_SHUTDOWN: engine closed while the batch was running")
                batch.transition("failed")

        try:
            await self._store.update(run.batch_id, settle)
        except BatchNotFound:
            pass

    async def _save_call_log(self, run: _BatchRun) -> None:
        path = calls_log_path(run.working_dir)
        try:
            await asyncio.to_thread(self._render.call_logger.save, path, run.batch_id)
        except OSError as exc:
            logger.warning("Could not save call log for batch %s: %s", run.batch_id, exc)

    # === Notifications ===

    async def _notify(self, run: _BatchRun, event: BatchCompletedEvent | BatchFailedEvent) -> None:
        if self._notifier is None:
            return
        set_stage("notify")
        try:
            await self._notifier.notify(event, run.target)
        except NotificationError as exc:
            logger.warning("Notification for batch %s failed: %s", run.batch_id, exc.message)
            await self._store.update(run.batch_id, lambda b: b.add_error(describe_error(exc)))

    def _check_thresholds(self, run: _BatchRun, snapshot: BatchSnapshot) -> None:
        crossed = [
            t for t in self._settings.progress_thresholds_list
            if snapshot.progress >= t and t not in run.thresholds_sent
        ]
        if not crossed:
            return
        run.thresholds_sent.update(crossed)
        if snapshot.progress < 100:
            self._send_progress(run, snapshot)

    def _send_progress(self, run: _BatchRun, snapshot: BatchSnapshot) -> None:
        """Fire-and-forget progress event."""
        if self._notifier is None:
            return
        remaining = snapshot.totals.total - snapshot.totals.processed
        estimate = self.estimate_seconds(remaining, run.width)
        event = BatchProgressEvent(summary=snapshot.summary(), estimated_remaining_s=estimate)
        task = asyncio.create_task(self._deliver_progress(run, event))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deliver_progress(self, run: _BatchRun, event: BatchProgressEvent) -> None:
        assert self._notifier is not None
        try:
            await self._notifier.notify(event, run.target)
        except NotificationError as exc:
            logger.warning("Progress notification for batch %s failed: %s", run.batch_id, exc.message)


def _start(batch: Batch) -> bool:
    if batch.status != "pending":
        return False
    batch.transition("processing")
    return True
