# src/storage/archive.py - v2
"""Archive builder: packs successful documents into one deflate zip.

Entries are streamed one document at a time in ascending row order, with a
fixed timestamp and permissions so identical inputs give identical archives.
No document is read into memory whole.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import zipfile
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel

from bulkdoc.core.errors import ArchiveError
from bulkdoc.storage.layout import document_name

logger = logging.getLogger(__name__)

FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
CHUNK_SIZE = 64 * 1024


class ArchiveReport(BaseModel):
    """What the builder wrote."""

    path: Path
    entries: list[str]
    size: int


class ArchiveBuilder:
    """Streams per-record outputs into a deflate-compressed zip on disk."""

    def __init__(self, chunk_size: int = CHUNK_SIZE) -> None:
        self._chunk_size = chunk_size

    def build(
        self,
        documents: Iterable[tuple[int, Path]],
        total: int,
        extension: str,
        destination: Path,
    ) -> ArchiveReport:
        """Write ``(row_index, path)`` documents to ``destination``.

        Raises:
            ArchiveError: On any I/O failure; the partial archive is removed.
        """
        ordered = sorted(documents, key=lambda item: item[0])
        names: list[str] = []
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for row_index, source in ordered:
                    name = document_name(row_index, total, extension)
                    info = zipfile.ZipInfo(name, date_time=FIXED_DATE_TIME)
                    info.external_attr = 0o644 << 16
                    info.compress_type = zipfile.ZIP_DEFLATED
                    # declared size decides whether the entry gets zip64 headers
                    info.file_size = source.stat().st_size
                    with source.open("rb") as src, zf.open(info, "w") as dst:
                        shutil.copyfileobj(src, dst, self._chunk_size)
                    names.append(name)
        except (OSError, zipfile.BadZipFile, ValueError) as exc:
            destination.unlink(missing_ok=True)
            raise ArchiveError(f"Failed to build archive {destination.name}: {exc}") from exc

        size = destination.stat().st_size
        logger.info("Archive built: %d entries, %d bytes", len(names), size)
        return ArchiveReport(path=destination, entries=names, size=size)

    async def build_async(
        self,
        documents: Iterable[tuple[int, Path]],
        total: int,
        extension: str,
        destination: Path,
    ) -> ArchiveReport:
        """Run ``build`` in a worker thread."""
        return await asyncio.to_thread(self.build, list(documents), total, extension, destination)
