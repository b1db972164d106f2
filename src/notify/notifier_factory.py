# src/notify/notifier_factory.py - v1
"""Factory: instantiate the notifier chain from configuration."""

from __future__ import annotations

import logging

from bulkdoc.config.settings import Settings
from bulkdoc.notify.base_notifier import BaseNotifier
from bulkdoc.notify.composite_notifier import CompositeNotifier
from bulkdoc.notify.log_notifier import LogNotifier

logger = logging.getLogger(__name__)


def create_notifier(settings: Settings) -> BaseNotifier | None:
    """Build the notifier for NOTIFIER_BACKEND.

    ``none`` disables notifications, ``log`` logs events, ``email`` logs
    and sends mail.

    Raises:
        ValueError: If the backend is not supported.
    """
    backend = settings.notifier_backend
    if backend == "none":
        return None
    if backend == "log":
        return LogNotifier()
    if backend == "email":
        from bulkdoc.notify.email_notifier import EmailNotifier

        email = EmailNotifier(
            api_key=settings.sendgrid_api_key,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
            reply_to=settings.email_reply_to,
            api_url=settings.sendgrid_api_url,
        )
        return CompositeNotifier([LogNotifier(), email])
    raise ValueError(f"Unsupported notifier backend: {backend!r}")
