# src/notify/composite_notifier.py - v1
"""Fan an event out to several notifiers."""

from __future__ import annotations

from bulkdoc.core.errors import NotificationError
from bulkdoc.notify.base_notifier import BaseNotifier
from bulkdoc.notify.models import NotificationEvent, NotificationTarget


class CompositeNotifier(BaseNotifier):
    """Delivers to every child; one child failing does not stop the others."""

    def __init__(self, notifiers: list[BaseNotifier]) -> None:
        super().__init__()
        self._notifiers = list(notifiers)

    @property
    def channel(self) -> str:
        return "+".join(n.channel for n in self._notifiers) or "none"

    @property
    def notifiers(self) -> list[BaseNotifier]:
        return list(self._notifiers)

    async def _deliver(
        self,
        event: NotificationEvent,
        target: NotificationTarget | None,
    ) -> str | None:
        failures: list[str] = []
        for notifier in self._notifiers:
            try:
                await notifier.notify(event, target)
            except NotificationError as exc:
                failures.append(f"{notifier.channel}: {exc.message}")
        if failures:
            raise NotificationError("; ".join(failures))
        return None

    async def close(self) -> None:
        for notifier in self._notifiers:
            await notifier.close()
