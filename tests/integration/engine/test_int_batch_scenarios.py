# tests/integration/engine/test_int_batch_scenarios.py - v2
"""End-to-end batch scenarios: submit -> render -> archive -> terminal state.

Filesystem only; rendering goes through StubRenderer unless a test
exercises the local backend.
"""

from __future__ import annotations

import asyncio
import zipfile

import pytest

from bulkdoc.core.errors import (
    ArchiveError,
    ArchiveUnavailable,
    SchemaMismatch,
    UpstreamFatal,
    UpstreamTransient,
)
from bulkdoc.engine.scheduler import BatchEngine
from bulkdoc.rendering.local_renderer import LocalRenderer
from bulkdoc.storage.archive import ArchiveBuilder
from stubs import RecordingNotifier, StubRenderer, invoice_rows, make_records

pytestmark = pytest.mark.integration

SMALL_ROWS = [
    {"name": "A", "email": "a@x", "amount": 1},
    {"name": "B", "email": "b@x", "amount": 2},
]


def _entries(path) -> list[str]:
    with zipfile.ZipFile(path) as zf:
        return zf.namelist()


def _totals(snapshot) -> tuple[int, int, int]:
    t = snapshot.totals
    return t.total, t.completed, t.failed


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_small_batch(self, make_engine, invoice_template):
        engine = make_engine()
        submitted = await engine.submit(invoice_template, make_records(SMALL_ROWS))
        final = await engine.wait(submitted.id)

        assert final.status == "completed"
        assert _totals(final) == (2, 2, 0)
        assert final.progress == 100
        assert _entries(engine.download(final.id)) == ["document_1.pdf", "document_2.pdf"]
        assert [r.file_name for r in final.results] == ["document_1.pdf", "document_2.pdf"]
        assert final.errors == ()
        await engine.close()

    @pytest.mark.asyncio
    async def test_local_txt_documents(self, make_engine, invoice_template):
        engine = make_engine(renderer=LocalRenderer())
        submitted = await engine.submit(
            invoice_template, make_records(SMALL_ROWS), {"format": "txt"},
        )
        final = await engine.wait(submitted.id)
        with zipfile.ZipFile(engine.download(final.id)) as zf:
            assert zf.read("document_1.txt") == b"Dear A,\nWe will mail a@x about 1 today.\n"
            assert zf.read("document_2.txt") == b"Dear B,\nWe will mail b@x about 2 today.\n"
        await engine.close()

    @pytest.mark.asyncio
    async def test_local_pdf_documents(self, make_engine, invoice_template):
        fitz = pytest.importorskip("fitz")
        engine = make_engine(renderer=LocalRenderer())
        submitted = await engine.submit(invoice_template, make_records(SMALL_ROWS))
        final = await engine.wait(submitted.id)
        assert final.status == "completed"
        with zipfile.ZipFile(engine.download(final.id)) as zf:
            doc = fitz.open(stream=zf.read("document_2.pdf"), filetype="pdf")
            assert "Dear B," in doc[0].get_text()
            doc.close()
        await engine.close()


class TestMissingRequiredColumn:
    @pytest.mark.asyncio
    async def test_rejected_without_batch(self, make_engine, invoice_template):
        engine = make_engine()
        rows = [{"name": r["name"], "email": r["email"]} for r in SMALL_ROWS]
        with pytest.raises(SchemaMismatch) as exc_info:
            await engine.submit(invoice_template, make_records(rows))
        assert exc_info.value.missing == ["amount"]
        assert engine.list().total == 0
        assert engine.stats().batches == 0
        await engine.close()


class TestPartialFailure:
    @pytest.mark.asyncio
    async def test_failed_rows_excluded_from_archive(self, make_engine, invoice_template):
        renderer = StubRenderer(failures={
            2: UpstreamFatal("rejected row 2"),
            4: UpstreamFatal("rejected row 4"),
        })
        engine = make_engine(renderer=renderer)
        submitted = await engine.submit(invoice_template, make_records(invoice_rows(5)))
        final = await engine.wait(submitted.id)

        assert final.status == "completed"
        assert _totals(final) == (5, 3, 2)
        assert _entries(final.archive_path) == [
            "document_1.pdf", "document_3.pdf", "document_5.pdf",
        ]
        failed = [r for r in final.results if r.status == "failed"]
        assert [r.row_index for r in failed] == [2, 4]
        assert failed[0].error == "UPSTREAM_FATAL: rejected row 2"
        # fatal upstream errors are not retried
        assert renderer.attempts_for(2) == 1
        await engine.close()


class TestAllFail:
    @pytest.mark.asyncio
    async def test_batch_fails_without_archive(self, make_engine, invoice_template):
        engine = make_engine(renderer=StubRenderer(fail_all=UpstreamFatal("down")))
        submitted = await engine.submit(invoice_template, make_records(invoice_rows(6)))
        final = await engine.wait(submitted.id)

        assert final.status == "failed"
        assert _totals(final) == (6, 0, 6)
        assert final.archive_path is None
        assert not (engine.working_root / final.id / "archive.zip").exists()
        assert final.errors[-1] == "All 6 documents failed"
        assert final.failed_at is not None
        with pytest.raises(ArchiveUnavailable):
            engine.download(final.id)
        await engine.close()


class TestCancelDuringProcessing:
    @pytest.mark.asyncio
    async def test_cancel_stops_dispatch(self, make_engine, invoice_template):
        renderer = StubRenderer(delay=0.02)
        engine = make_engine(renderer=renderer)
        submitted = await engine.submit(
            invoice_template, make_records(invoice_rows(100)), {"batchSize": 4},
        )
        await asyncio.sleep(0.2)
        requested = await engine.cancel(submitted.id)
        assert requested.cancel_requested
        final = await engine.wait(submitted.id, timeout=5)

        assert final.status == "cancelled"
        assert final.totals.processed < 100
        assert final.totals.processed > 0
        assert final.cancelled_at is not None
        assert all(r.produced_at <= final.cancelled_at for r in final.results)
        assert final.archive_path is None
        # nothing is appended once the batch is terminal
        await asyncio.sleep(0.1)
        assert engine.status(final.id).totals == final.totals
        assert len(renderer.calls) == final.totals.processed
        await engine.close()

    @pytest.mark.asyncio
    async def test_cancelled_batch_is_kept(self, make_engine, invoice_template):
        engine = make_engine(renderer=StubRenderer(delay=0.05))
        submitted = await engine.submit(invoice_template, make_records(invoice_rows(10)))
        await asyncio.sleep(0.02)
        await engine.cancel(submitted.id)
        await engine.wait(submitted.id)
        assert engine.list(status="cancelled").total == 1
        assert (engine.working_root / submitted.id).is_dir()
        await engine.close()


class TestRetryRecovery:
    @pytest.mark.asyncio
    async def test_transient_failures_recovered(self, make_engine, invoice_template):
        rows = invoice_rows(4)
        renderer = StubRenderer(failures={
            i: [UpstreamTransient("busy"), UpstreamTransient("busy")]
            for i in range(1, len(rows) + 1)
        })
        engine = make_engine(renderer=renderer)
        submitted = await engine.submit(
            invoice_template, make_records(rows), {"retryAttempts": 3, "retryBaseDelayMs": 1},
        )
        final = await engine.wait(submitted.id)

        assert final.status == "completed"
        assert _totals(final) == (4, 4, 0)
        assert all(r.attempts == 3 for r in final.results)
        # the idempotency key is stable across the retries of one row
        keys = {key for row, key in renderer.calls if row == 1}
        assert len(keys) == 1
        stats = engine.render_service.call_logger.stats(final.id)
        assert (stats.retries, stats.successes) == (8, 4)
        await engine.close()

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, make_engine, invoice_template):
        renderer = StubRenderer(failures={1: [UpstreamTransient("busy")] * 5})
        engine = make_engine(renderer=renderer)
        submitted = await engine.submit(
            invoice_template, make_records(invoice_rows(2)), {"retryAttempts": 2},
        )
        final = await engine.wait(submitted.id)
        assert _totals(final) == (2, 1, 1)
        assert renderer.attempts_for(1) == 3
        assert final.results[0].error == "UPSTREAM_TRANSIENT: busy"
        await engine.close()


class FailingArchiveBuilder(ArchiveBuilder):
    def build(self, documents, total, extension, destination):
        raise ArchiveError("disk full")


class TestEngineFatal:
    @pytest.mark.asyncio
    async def test_archive_failure_fails_batch(self, settings, invoice_template):
        notifier = RecordingNotifier()
        engine = BatchEngine(
            settings, renderer=StubRenderer(), notifier=notifier,
            archive_builder=FailingArchiveBuilder(),
        )
        submitted = await engine.submit(invoice_template, make_records(invoice_rows(3)))
        final = await engine.wait(submitted.id)

        assert final.status == "failed"
        assert _totals(final) == (3, 3, 0)
        assert final.errors == ("ARCHIVE_ERROR: disk full",)
        assert final.failed_at is not None
        assert final.completed_at is None
        assert final.archive_path is None
        kinds = notifier.kinds()
        assert kinds.count("batch_failed") == 1
        assert "batch_completed" not in kinds
        with pytest.raises(ArchiveUnavailable):
            engine.download(final.id)
        await engine.close()

    @pytest.mark.asyncio
    async def test_unusable_working_root_fails_batch(self, settings, invoice_template):
        # a regular file where the working root should be
        settings.working_root_path.parent.mkdir(parents=True, exist_ok=True)
        settings.working_root_path.write_text("not a directory")
        notifier = RecordingNotifier()
        renderer = StubRenderer()
        engine = BatchEngine(settings, renderer=renderer, notifier=notifier)
        submitted = await engine.submit(invoice_template, make_records(invoice_rows(2)))
        final = await engine.wait(submitted.id)

        assert final.status == "failed"
        assert _totals(final) == (2, 0, 0)
        assert final.errors[-1].startswith("WORKING_DIRECTORY_UNAVAILABLE: ")
        assert final.started_at is not None
        assert final.failed_at is not None
        assert renderer.calls == []
        kinds = notifier.kinds()
        assert kinds.count("batch_failed") == 1
        assert "batch_completed" not in kinds
        await engine.close()
