# src/storage/base_output_writer.py - v2
"""Abstract writer for per-batch artifacts: documents, archives, call logs."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from pathlib import Path


class BaseOutputWriter(ABC):
    """Storage backend for everything the engine persists under a batch directory."""

    @abstractmethod
    async def write(self, path: Path, content: bytes | str) -> int:
        """Persist ``content`` at ``path``; return the number of bytes written."""

    @abstractmethod
    async def read(self, path: Path) -> bytes:
        """Return the full content of a stored artifact."""

    @abstractmethod
    def iter_chunks(self, path: Path, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        """Stream an artifact in ``chunk_size`` pieces (archive downloads)."""

    @abstractmethod
    async def remove(self, path: Path) -> int:
        """Remove a file or a whole batch tree; return the bytes freed."""

    @abstractmethod
    async def list_dir(self, path: Path) -> list[str]:
        """Names directly under ``path``, sorted; empty if it does not exist."""
