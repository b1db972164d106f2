# src/notify/models.py - v1
"""Notification events and delivery records.

Events carry batch identity and counts only. Recipient data lives in
NotificationTarget, which only the delivery layer sees.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bulkdoc.core.models import BatchSummary, utcnow

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class NotificationTarget(BaseModel):
    """Where to deliver notifications for one batch."""

    model_config = ConfigDict(frozen=True)

    email: str
    name: str | None = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if not _EMAIL.match(v):
            raise ValueError(f"Invalid email address: {v!r}")
        return v


class DownloadLink(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_name: str
    url: str
    size: int | None = None


class BatchCompletedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["batch_completed"] = "batch_completed"
    summary: BatchSummary
    archive_name: str | None = None
    archive_size: int | None = None
    download_links: tuple[DownloadLink, ...] = ()


class BatchFailedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["batch_failed"] = "batch_failed"
    summary: BatchSummary
    error_summary: tuple[str, ...] = ()
    error_count: int = 0


class BatchProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["batch_progress"] = "batch_progress"
    summary: BatchSummary
    estimated_remaining_s: float | None = None


NotificationEvent = Annotated[
    Union[BatchCompletedEvent, BatchFailedEvent, BatchProgressEvent],
    Field(discriminator="kind"),
]


class DeliveryRecord(BaseModel):
    """One delivery attempt of one event through one channel."""

    channel: str
    event_kind: str
    batch_id: str
    status: Literal["sent", "failed", "skipped"]
    at: datetime = Field(default_factory=utcnow)
    message_id: str | None = None
    error: str | None = None
