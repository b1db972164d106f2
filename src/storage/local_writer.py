# src/storage/local_writer.py - v4
"""Local filesystem output writer (default backend).

Blocking file I/O runs in worker threads so event-loop tasks stay
cancellable while a document is being written.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from collections.abc import AsyncIterator
from pathlib import Path

from bulkdoc.storage.base_output_writer import BaseOutputWriter


def tree_size(path: Path) -> int:
    """Total size in bytes of a file or directory tree."""
    if path.is_file():
        return path.stat().st_size
    if not path.is_dir():
        return 0
    return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())


class LocalWriter(BaseOutputWriter):
    """Write batch artifacts to absolute local paths."""

    async def write(self, path: Path, content: bytes | str) -> int:
        """Write atomically: the final name only appears once the data is complete."""
        data = content.encode("utf-8") if isinstance(content, str) else content
        return await asyncio.to_thread(self._write_sync, Path(path), data)

    @staticmethod
    def _write_sync(p: Path, data: bytes) -> int:
        p.parent.mkdir(parents=True, exist_ok=True)
        partial = p.with_name(p.name + ".part")
        try:
            partial.write_bytes(data)
            os.replace(partial, p)
        except OSError:
            partial.unlink(missing_ok=True)
            raise
        return len(data)

    async def read(self, path: Path) -> bytes:
        return await asyncio.to_thread(Path(path).read_bytes)

    async def iter_chunks(self, path: Path, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        """Stream a local file in chunks."""
        with Path(path).open("rb") as f:
            while True:
                chunk = await asyncio.to_thread(f.read, chunk_size)
                if not chunk:
                    break
                yield chunk

    async def remove(self, path: Path) -> int:
        """Remove a file or directory tree; missing paths free nothing."""
        return await asyncio.to_thread(self._remove_sync, Path(path))

    @staticmethod
    def _remove_sync(p: Path) -> int:
        freed = tree_size(p)
        if p.is_dir() and not p.is_symlink():
            shutil.rmtree(p)
        elif p.exists() or p.is_symlink():
            p.unlink()
        return freed

    async def list_dir(self, path: Path) -> list[str]:
        """Entry names under ``path``, sorted; empty when it is not a directory."""
        p = Path(path)
        if not p.is_dir():
            return []
        return sorted(entry.name for entry in p.iterdir())
