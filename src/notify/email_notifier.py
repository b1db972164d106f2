# src/notify/email_notifier.py - v1
"""Email notifier: SendGrid v3 ``mail/send`` over httpx.

Bodies are rendered from Jinja2 templates (HTML and plain text). Events
without a NotificationTarget are skipped.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from bulkdoc.core.errors import NotificationError
from bulkdoc.notify.base_notifier import BaseNotifier
from bulkdoc.notify.models import (
    BatchCompletedEvent,
    NotificationEvent,
    NotificationTarget,
)
from bulkdoc.notify.templates import SUBJECTS, create_environment

logger = logging.getLogger(__name__)

_TIMEOUT = httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=30.0)


class EmailNotifier(BaseNotifier):
    """Deliver batch events to the requester's mailbox."""

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str = "Bulk Document Maker",
        reply_to: str = "",
        api_url: str = "https://api.sendgrid.com/v3",
        app_name: str = "Bulk Document Maker",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        self._api_key = api_key
        self._from_email = from_email
        self._from_name = from_name
        self._reply_to = reply_to
        self._api_url = api_url.rstrip("/")
        self._app_name = app_name
        self._env = create_environment()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=_TIMEOUT)

    @property
    def channel(self) -> str:
        return "email"

    def accepts(self, event: NotificationEvent, target: NotificationTarget | None) -> bool:
        return target is not None

    def render(self, event: NotificationEvent, target: NotificationTarget) -> tuple[str, str, str]:
        """Return (subject, html, text) for an event."""
        summary = event.summary
        duration = None
        if summary.started_at and summary.finished_at:
            duration = (summary.finished_at - summary.started_at).total_seconds()
        context: dict[str, Any] = {
            "app_name": self._app_name,
            "event": event,
            "summary": summary,
            "recipient_name": target.name,
            "support_email": self._reply_to or None,
            "duration": duration,
        }
        subject = SUBJECTS[event.kind].format(batch_id=summary.batch_id)
        html = self._env.get_template(f"{event.kind}.html").render(subject=subject, **context)
        text = self._env.get_template(f"{event.kind}.txt").render(subject=subject, **context)
        return subject, html, text

    def build_payload(self, event: NotificationEvent, target: NotificationTarget) -> dict[str, Any]:
        subject, html, text = self.render(event, target)
        recipient: dict[str, str] = {"email": target.email}
        if target.name:
            recipient["name"] = target.name
        payload: dict[str, Any] = {
            "personalizations": [{"to": [recipient]}],
            "from": {"email": self._from_email, "name": self._from_name},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text},
                {"type": "text/html", "value": html},
            ],
            "custom_args": {"batch_id": event.summary.batch_id, "event": event.kind},
            "tracking_settings": {
                "click_tracking": {"enable": isinstance(event, BatchCompletedEvent)},
                "open_tracking": {"enable": True},
            },
        }
        if self._reply_to:
            payload["reply_to"] = {"email": self._reply_to}
        return payload

    async def _deliver(
        self,
        event: NotificationEvent,
        target: NotificationTarget | None,
    ) -> str | None:
        assert target is not None  # accepts() filters targetless events
        payload = self.build_payload(event, target)
        try:
            response = await self._client.post(
                f"{self._api_url}/mail/send",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as exc:
            raise NotificationError(f"SendGrid request failed: {exc}") from exc

        if not response.is_success:
            raise NotificationError(
                f"SendGrid rejected {event.kind} for batch {event.summary.batch_id}: "
                f"{response.status_code} {response.text[:200]}"
            )
        message_id = response.headers.get("X-Message-Id")
        logger.info("Sent %s email for batch %s", event.kind, event.summary.batch_id)
        return message_id

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
