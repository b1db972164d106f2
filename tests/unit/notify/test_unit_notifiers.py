# tests/unit/notify/test_unit_notifiers.py - v2
"""Tests for notify/ - log, composite and email notifiers, factory."""

from __future__ import annotations

import json
import logging
from datetime import timedelta

import httpx
import pytest

from bulkdoc.core.errors import NotificationError
from bulkdoc.core.models import BatchSummary, BatchTotals, utcnow
from bulkdoc.notify.composite_notifier import CompositeNotifier
from bulkdoc.notify.email_notifier import EmailNotifier
from bulkdoc.notify.log_notifier import LogNotifier
from bulkdoc.notify.models import (
    BatchCompletedEvent,
    BatchFailedEvent,
    BatchProgressEvent,
    DownloadLink,
    NotificationTarget,
)
from bulkdoc.notify.notifier_factory import create_notifier
from stubs import RecordingNotifier

TARGET = NotificationTarget(email="ops@example.com", name="Ops")


def _summary(status="completed", completed=3, failed=1, total=4) -> BatchSummary:
    started = utcnow()
    return BatchSummary(
        batch_id="20240501_120000_abcd1234",
        status=status,
        progress=100,
        totals=BatchTotals(total=total, completed=completed, failed=failed),
        template_name="invoice.txt",
        created_at=started,
        started_at=started,
        finished_at=started + timedelta(seconds=75),
    )


def _completed() -> BatchCompletedEvent:
    return BatchCompletedEvent(
        summary=_summary(),
        archive_name="archive.zip",
        archive_size=1536,
        download_links=(DownloadLink(
            file_name="archive.zip",
            url="http://localhost/api/batches/20240501_120000_abcd1234/download",
            size=1536,
        ),),
    )


def _failed() -> BatchFailedEvent:
    return BatchFailedEvent(
        summary=_summary(status="failed", completed=0, failed=4),
        error_summary=("UPSTREAM_FATAL: <bad> template",),
        error_count=4,
    )


def _email(handler) -> tuple[EmailNotifier, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    notifier = EmailNotifier(
        api_key="sg-key",
        from_email="noreply@example.com",
        reply_to="help@example.com",
        api_url="https://sendgrid.test/v3",
        client=client,
    )
    return notifier, seen


class TestNotificationTarget:
    def test_rejects_invalid_email(self):
        with pytest.raises(ValueError):
            NotificationTarget(email="not-an-email")

    def test_strips(self):
        assert NotificationTarget(email=" a@b.io ").email == "a@b.io"


class TestLogNotifier:
    @pytest.mark.asyncio
    async def test_logs_and_tracks(self, caplog):
        notifier = LogNotifier()
        with caplog.at_level(logging.INFO, logger="bulkdoc.notify.log_notifier"):
            record = await notifier.notify(_completed())
        assert record.status == "sent"
        assert "completed: 3/4 completed, 1 failed" in caplog.text
        assert notifier.deliveries == [record]


class TestCompositeNotifier:
    @pytest.mark.asyncio
    async def test_fans_out(self):
        a, b = RecordingNotifier(), RecordingNotifier()
        composite = CompositeNotifier([a, b])
        await composite.notify(_completed(), TARGET)
        assert a.kinds() == b.kinds() == ["batch_completed"]
        assert composite.channel == "recording+recording"

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_others(self):
        broken = RecordingNotifier(fail_with=NotificationError("smtp down"))
        healthy = RecordingNotifier()
        composite = CompositeNotifier([broken, healthy])
        with pytest.raises(NotificationError, match="smtp down"):
            await composite.notify(_failed(), TARGET)
        assert healthy.kinds() == ["batch_failed"]
        assert composite.deliveries[0].status == "failed"


class TestEmailNotifier:
    @pytest.mark.asyncio
    async def test_completed_payload(self):
        notifier, seen = _email(
            lambda r: httpx.Response(202, headers={"X-Message-Id": "m-1"}),
        )
        record = await notifier.notify(_completed(), TARGET)
        assert record.status == "sent"
        assert record.message_id == "m-1"
        [request] = seen
        assert str(request.url) == "https://sendgrid.test/v3/mail/send"
        assert request.headers["Authorization"] == "Bearer sg-key"
        payload = json.loads(request.content)
        assert payload["personalizations"] == [{"to": [{"email": "ops@example.com", "name": "Ops"}]}]
        assert payload["subject"] == "Your documents are ready - Batch 20240501_120000_abcd1234"
        assert payload["reply_to"] == {"email": "help@example.com"}
        assert payload["tracking_settings"]["click_tracking"] == {"enable": True}
        text, html = (c["value"] for c in payload["content"])
        assert "3 of 4 generated, 1 failed" in text
        assert "Processing time: 1m 15s" in text
        assert "/download" in html and "1.5 KB" in html

    def test_failed_body_escapes_html(self):
        notifier, _ = _email(lambda r: httpx.Response(202))
        subject, html, text = notifier.render(_failed(), TARGET)
        assert subject.startswith("Document generation failed")
        assert "&lt;bad&gt;" in html
        assert "- UPSTREAM_FATAL: <bad> template" in text
        assert "Contact help@example.com" in text

    def test_progress_body(self):
        notifier, _ = _email(lambda r: httpx.Response(202))
        event = BatchProgressEvent(
            summary=_summary(status="processing"), estimated_remaining_s=3725,
        )
        _, _, text = notifier.render(event, TARGET)
        assert "Estimated time remaining: 1h 2m" in text

    @pytest.mark.asyncio
    async def test_skipped_without_target(self):
        notifier, seen = _email(lambda r: httpx.Response(202))
        record = await notifier.notify(_completed(), None)
        assert record.status == "skipped"
        assert seen == []

    @pytest.mark.asyncio
    async def test_rejected_raises(self):
        notifier, _ = _email(lambda r: httpx.Response(401, text="bad key"))
        with pytest.raises(NotificationError, match="401"):
            await notifier.notify(_completed(), TARGET)
        assert notifier.deliveries[-1].status == "failed"

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        notifier, _ = _email(handler)
        with pytest.raises(NotificationError, match="SendGrid request failed"):
            await notifier.notify(_completed(), TARGET)


class TestNotifierFactory:
    def test_none(self, settings):
        assert create_notifier(settings) is None

    def test_log(self, settings):
        notifier = create_notifier(settings.model_copy(update={"notifier_backend": "log"}))
        assert isinstance(notifier, LogNotifier)

    @pytest.mark.asyncio
    async def test_email_chain(self, settings):
        cfg = settings.model_copy(update={
            "notifier_backend": "email", "sendgrid_api_key": "k",
        })
        notifier = create_notifier(cfg)
        assert isinstance(notifier, CompositeNotifier)
        assert notifier.channel == "log+email"
        await notifier.close()
