# src/notify/base_notifier.py - v2
"""Abstract notifier interface with delivery tracking."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from bulkdoc.core.errors import NotificationError
from bulkdoc.notify.models import DeliveryRecord, NotificationEvent, NotificationTarget

logger = logging.getLogger(__name__)


class BaseNotifier(ABC):
    """Unified interface for notification sinks.

    ``notify`` records every delivery; a failed delivery is recorded and
    then raised as NotificationError.
    """

    def __init__(self) -> None:
        self._deliveries: list[DeliveryRecord] = []

    @property
    @abstractmethod
    def channel(self) -> str:
        """Channel identifier (log, email...)."""

    @abstractmethod
    async def _deliver(
        self,
        event: NotificationEvent,
        target: NotificationTarget | None,
    ) -> str | None:
        """Deliver one event; return a message id, or raise NotificationError."""

    def accepts(self, event: NotificationEvent, target: NotificationTarget | None) -> bool:
        """Whether this sink delivers ``event`` at all."""
        return True

    async def notify(
        self,
        event: NotificationEvent,
        target: NotificationTarget | None = None,
    ) -> DeliveryRecord:
        batch_id = event.summary.batch_id
        if not self.accepts(event, target):
            return self._track(DeliveryRecord(
                channel=self.channel, event_kind=event.kind, batch_id=batch_id, status="skipped",
            ))
        try:
            message_id = await self._deliver(event, target)
        except NotificationError as exc:
            self._track(DeliveryRecord(
                channel=self.channel, event_kind=event.kind, batch_id=batch_id,
                status="failed", error=exc.message,
            ))
            raise
        return self._track(DeliveryRecord(
            channel=self.channel, event_kind=event.kind, batch_id=batch_id,
            status="sent", message_id=message_id,
        ))

    def _track(self, record: DeliveryRecord) -> DeliveryRecord:
        self._deliveries.append(record)
        return record

    @property
    def deliveries(self) -> list[DeliveryRecord]:
        return list(self._deliveries)

    async def close(self) -> None:
        """Release resources."""
