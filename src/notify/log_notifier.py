# src/notify/log_notifier.py - v1
"""Notifier that writes events to the application log."""

from __future__ import annotations

import logging

from bulkdoc.notify.base_notifier import BaseNotifier
from bulkdoc.notify.models import NotificationEvent, NotificationTarget

logger = logging.getLogger(__name__)


class LogNotifier(BaseNotifier):
    @property
    def channel(self) -> str:
        return "log"

    async def _deliver(
        self,
        event: NotificationEvent,
        target: NotificationTarget | None,
    ) -> str | None:
        s = event.summary
        logger.info(
            "Batch %s %s: %d/%d completed, %d failed (%d%%)",
            s.batch_id, event.kind.removeprefix("batch_"),
            s.totals.completed, s.totals.total, s.totals.failed, s.progress,
            extra={"data": event.model_dump(mode="json")},
        )
        return None
