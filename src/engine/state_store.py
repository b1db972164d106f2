# src/engine/state_store.py - v1
"""In-process batch state store.

Every mutation of a batch runs under that batch's asyncio.Lock; readers get
immutable BatchSnapshot copies. Each subscriber owns a bounded progress
channel that drops its oldest observation when full and is closed once the
batch reaches a terminal state.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from bulkdoc.core.errors import BatchNotFound
from bulkdoc.core.models import Batch, BatchSnapshot, BatchStatus, Page

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProgressChannel:
    """Bounded per-subscriber queue of progress snapshots."""

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[BatchSnapshot | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, item: BatchSnapshot | None) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(item)

    def publish(self, snapshot: BatchSnapshot) -> None:
        if not self._closed:
            self._put(snapshot)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._put(None)

    async def get(self) -> BatchSnapshot | None:
        """Next snapshot, or None once the channel is closed and drained."""
        return await self._queue.get()

    async def __aiter__(self) -> AsyncIterator[BatchSnapshot]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item


@dataclass
class _Entry:
    batch: Batch
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    channels: list[ProgressChannel] = field(default_factory=list)


class BatchStateStore:
    """Concurrent map of batch id to batch state."""

    def __init__(self, channel_size: int = 64) -> None:
        self._entries: dict[str, _Entry] = {}
        self._channel_size = channel_size

    def __contains__(self, batch_id: object) -> bool:
        return batch_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def ids(self) -> list[str]:
        return list(self._entries)

    async def create(self, batch: Batch) -> BatchSnapshot:
        if batch.id in self._entries:
            raise ValueError(f"Batch {batch.id} already exists")
        self._entries[batch.id] = _Entry(batch=batch)
        logger.debug("Batch %s created (%d records)", batch.id, batch.total)
        return batch.snapshot()

    def get(self, batch_id: str, include_results: bool = True) -> BatchSnapshot | None:
        entry = self._entries.get(batch_id)
        if entry is None:
            return None
        return entry.batch.snapshot(include_results=include_results)

    def require(self, batch_id: str, include_results: bool = True) -> BatchSnapshot:
        """Like ``get`` but raises BatchNotFound."""
        snapshot = self.get(batch_id, include_results)
        if snapshot is None:
            raise BatchNotFound(batch_id)
        return snapshot

    async def update(self, batch_id: str, mutator: Callable[[Batch], T]) -> T:
        """Run ``mutator`` under the batch lock, then publish a progress snapshot.

        Raises:
            BatchNotFound: If the batch does not exist (or was deleted meanwhile).
        """
        entry = self._entries.get(batch_id)
        if entry is None:
            raise BatchNotFound(batch_id)
        async with entry.lock:
            if self._entries.get(batch_id) is not entry:
                raise BatchNotFound(batch_id)
            result = mutator(entry.batch)
            if entry.channels:
                observation = entry.batch.snapshot(include_results=False)
                for channel in entry.channels:
                    channel.publish(observation)
                if entry.batch.is_terminal:
                    for channel in entry.channels:
                        channel.close()
                    entry.channels.clear()
            return result

    async def delete(self, batch_id: str) -> bool:
        entry = self._entries.get(batch_id)
        if entry is None:
            return False
        async with entry.lock:
            if self._entries.pop(batch_id, None) is None:
                return False
            for channel in entry.channels:
                channel.close()
            entry.channels.clear()
        logger.debug("Batch %s removed from store", batch_id)
        return True

    def subscribe(self, batch_id: str) -> ProgressChannel:
        """Open a progress channel; a terminal batch yields its final snapshot only.

        Raises:
            BatchNotFound: If the batch does not exist.
        """
        entry = self._entries.get(batch_id)
        if entry is None:
            raise BatchNotFound(batch_id)
        channel = ProgressChannel(self._channel_size)
        channel.publish(entry.batch.snapshot(include_results=False))
        if entry.batch.is_terminal:
            channel.close()
        else:
            entry.channels.append(channel)
        return channel

    def list(
        self,
        status: BatchStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Page:
        """Newest-first page of snapshots (without per-record results)."""
        batches = [
            e.batch for e in self._entries.values()
            if status is None or e.batch.status == status
        ]
        batches.sort(key=lambda b: b.created_at, reverse=True)
        window = batches[offset:offset + limit]
        return Page(
            items=[b.snapshot(include_results=False) for b in window],
            total=len(batches),
            limit=limit,
            offset=offset,
        )

    def counts_by_status(self) -> dict[str, int]:
        return dict(Counter(e.batch.status for e in self._entries.values()))
