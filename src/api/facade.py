# src/api/facade.py - v2
"""Public API facade: the submission and status surface over raw bytes.

Usage:
    async with BulkDocService(settings) as service:
        receipt = await service.submit(template_upload, records_upload, {"format": "pdf"})
        snapshot = await service.wait(receipt.batch_id)
        async for chunk in service.download(receipt.batch_id):
            ...
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Mapping

from pydantic import ValidationError

from bulkdoc.api.models import SubmitResult, UploadedFile
from bulkdoc.config.settings import Settings
from bulkdoc.core.errors import InvalidOptions
from bulkdoc.core.models import BatchSnapshot, BatchStatus, OutputOptions, Page
from bulkdoc.engine.models import EngineStats
from bulkdoc.engine.scheduler import BatchEngine, generate_batch_id
from bulkdoc.notify.models import NotificationTarget
from bulkdoc.records.models import ParseOptions
from bulkdoc.records.parser import parse_records
from bulkdoc.storage.layout import RECORDS_STEM, TEMPLATE_STEM, batch_dir, upload_path
from bulkdoc.storage.local_writer import LocalWriter
from bulkdoc.template.parser import media_type_for, parse_template

logger = logging.getLogger(__name__)


class BulkDocService:
    """Owns one BatchEngine and exposes the caller-facing operations."""

    def __init__(
        self,
        settings: Settings | None = None,
        engine: BatchEngine | None = None,
    ) -> None:
        if settings is None:
            settings = engine.settings if engine is not None else Settings()
        self._settings = settings
        if engine is None:
            from bulkdoc.notify.notifier_factory import create_notifier

            engine = BatchEngine(self._settings, notifier=create_notifier(self._settings))
        self._engine = engine
        self._writer = LocalWriter()

    @property
    def engine(self) -> BatchEngine:
        return self._engine

    async def __aenter__(self) -> BulkDocService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def submit(
        self,
        template: UploadedFile,
        records: UploadedFile,
        options: OutputOptions | Mapping[str, object] | None = None,
        parse_options: ParseOptions | Mapping[str, object] | None = None,
        target: NotificationTarget | None = None,
        optional_fields: Iterable[str] = (),
    ) -> SubmitResult:
        """Validate the uploads and start a batch.

        The uploads are stored under the batch directory while they are
        parsed and removed afterwards. On a validation error nothing is left
        behind and no batch exists.

        Raises:
            ValidationFailure: Any of the submission-time validation errors.
        """
        if not isinstance(options, OutputOptions):
            options = OutputOptions.parse(options)
        if parse_options is not None and not isinstance(parse_options, ParseOptions):
            try:
                parse_options = ParseOptions.model_validate(dict(parse_options))
            except ValidationError as exc:
                raise InvalidOptions(f"Invalid parse options: {exc}") from exc

        batch_id = generate_batch_id()
        working_dir = batch_dir(self._engine.working_root, batch_id)
        template_file = upload_path(working_dir, TEMPLATE_STEM, template.extension)
        records_file = upload_path(working_dir, RECORDS_STEM, records.extension)

        try:
            await self._writer.write(template_file, template.content)
            await self._writer.write(records_file, records.content)

            model = parse_template(
                await self._writer.read(template_file),
                template.media_type or media_type_for(template.filename),
                name=template.filename,
                optional=optional_fields,
            )
            headers, stream, metadata = await asyncio.to_thread(
                parse_records,
                await self._writer.read(records_file),
                parse_options,
                self._settings.max_source_bytes,
                self._settings.max_source_rows,
            )
        except BaseException:
            await self._writer.remove(working_dir)
            raise
        finally:
            await self._writer.remove(template_file)
            await self._writer.remove(records_file)

        try:
            snapshot = await self._engine.submit(
                model, stream, options, target=target, batch_id=batch_id,
            )
        except BaseException:
            await self._writer.remove(working_dir)
            raise

        for warning in metadata.warnings:
            logger.warning("Batch %s source: %s", batch_id, warning)
        return SubmitResult(
            batch_id=batch_id,
            status=snapshot.status,
            total_records=snapshot.totals.total,
            output_format=snapshot.options.format,
            estimated_seconds=snapshot.estimated_seconds,
            template_name=model.name,
            placeholders=list(model.inventory),
            source=metadata,
        )

    def status(self, batch_id: str) -> BatchSnapshot:
        return self._engine.status(batch_id)

    async def cancel(self, batch_id: str) -> BatchSnapshot:
        return await self._engine.cancel(batch_id)

    async def wait(self, batch_id: str, timeout: float | None = None) -> BatchSnapshot:
        return await self._engine.wait(batch_id, timeout)

    def download(self, batch_id: str, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        """Chunked archive bytes of a completed batch.

        Raises:
            BatchNotFound, ArchiveUnavailable: Checked before the first chunk.
        """
        self._engine.download(batch_id)
        return self._engine.iter_archive(batch_id, chunk_size)

    async def delete(self, batch_id: str) -> bool:
        return await self._engine.delete(batch_id)

    def list(self, status: BatchStatus | None = None, limit: int = 50, offset: int = 0) -> Page:
        return self._engine.list(status=status, limit=limit, offset=offset)

    def stats(self) -> EngineStats:
        return self._engine.stats()

    async def close(self) -> None:
        await self._engine.close()
