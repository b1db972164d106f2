# tests/unit/api/test_unit_facade.py - v1
"""Tests for api/facade.py - submission from raw uploads, download stream."""

from __future__ import annotations

import io
import zipfile

import pytest

from bulkdoc.api.facade import BulkDocService
from bulkdoc.api.models import UploadedFile
from bulkdoc.core.errors import (
    ArchiveUnavailable,
    BatchNotFound,
    InvalidOptions,
    SchemaMismatch,
    UnsupportedFormat,
)
from stubs import INVOICE_TEMPLATE, StubRenderer

CSV = b"name,email,amount\nAda,ada@example.com,10\nBob,bob@example.com,20\n"


@pytest.fixture
def service(make_engine):
    return BulkDocService(engine=make_engine(renderer=StubRenderer(delay=0.01)))


def _template() -> UploadedFile:
    return UploadedFile(content=INVOICE_TEMPLATE, filename="invoice.txt")


class TestUploadedFile:
    def test_extension(self):
        assert UploadedFile(content=b"", filename="Data.CSV").extension == "csv"
        assert UploadedFile(content=b"", filename="README").extension == "bin"


class TestSubmit:
    @pytest.mark.asyncio
    async def test_receipt(self, service):
        receipt = await service.submit(
            _template(), UploadedFile(content=CSV, filename="people.csv"), {"format": "txt"},
        )
        assert receipt.status == "pending"
        assert receipt.total_records == 2
        assert receipt.output_format == "txt"
        assert receipt.template_name == "invoice.txt"
        assert [p.name for p in receipt.placeholders] == ["name", "email", "amount"]
        assert receipt.source.delimiter == ","
        await service.wait(receipt.batch_id)
        await service.close()

    @pytest.mark.asyncio
    async def test_uploads_removed_after_parsing(self, service):
        receipt = await service.submit(
            _template(), UploadedFile(content=CSV, filename="people.csv"), {"format": "txt"},
        )
        await service.wait(receipt.batch_id)
        workdir = service.engine.working_root / receipt.batch_id
        assert not (workdir / "template.txt").exists()
        assert not (workdir / "records.csv").exists()
        assert (workdir / "archive.zip").is_file()
        await service.close()

    @pytest.mark.asyncio
    async def test_schema_mismatch_leaves_nothing(self, service):
        with pytest.raises(SchemaMismatch):
            await service.submit(
                _template(), UploadedFile(content=b"name,email\nA,a@x\n", filename="r.csv"),
            )
        assert service.list().total == 0
        root = service.engine.working_root
        assert not root.exists() or list(root.iterdir()) == []
        await service.close()

    @pytest.mark.asyncio
    async def test_unsupported_template(self, service):
        with pytest.raises(UnsupportedFormat):
            await service.submit(
                UploadedFile(content=b"x", filename="slides.pptx"),
                UploadedFile(content=CSV, filename="r.csv"),
            )
        await service.close()

    @pytest.mark.asyncio
    async def test_invalid_parse_options(self, service):
        with pytest.raises(InvalidOptions):
            await service.submit(
                _template(), UploadedFile(content=CSV, filename="r.csv"),
                parse_options={"quote": "'"},
            )
        await service.close()

    @pytest.mark.asyncio
    async def test_optional_fields(self, service):
        receipt = await service.submit(
            _template(),
            UploadedFile(content=b"name,email\nA,a@x\n", filename="r.csv"),
            {"format": "txt"},
            optional_fields=["amount"],
        )
        assert receipt.total_records == 1
        final = await service.wait(receipt.batch_id)
        assert final.status == "completed"
        await service.close()


class TestDownload:
    @pytest.mark.asyncio
    async def test_chunks_form_the_archive(self, service):
        receipt = await service.submit(
            _template(), UploadedFile(content=CSV, filename="r.csv"), {"format": "txt"},
        )
        await service.wait(receipt.batch_id)
        chunks = [c async for c in service.download(receipt.batch_id, chunk_size=64)]
        assert len(chunks) > 1
        with zipfile.ZipFile(io.BytesIO(b"".join(chunks))) as zf:
            assert zf.namelist() == ["document_1.txt", "document_2.txt"]
        await service.close()

    @pytest.mark.asyncio
    async def test_checked_before_streaming(self, service):
        with pytest.raises(BatchNotFound):
            service.download("nope")
        receipt = await service.submit(
            _template(), UploadedFile(content=CSV, filename="r.csv"), {"format": "txt"},
        )
        with pytest.raises(ArchiveUnavailable):
            service.download(receipt.batch_id)
        await service.wait(receipt.batch_id)
        await service.close()


class TestContextManager:
    @pytest.mark.asyncio
    async def test_closes_engine(self, make_engine):
        renderer = StubRenderer()
        async with BulkDocService(engine=make_engine(renderer=renderer)) as service:
            assert service.stats().batches == 0
        assert renderer.closed
