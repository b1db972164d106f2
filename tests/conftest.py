# tests/conftest.py - v2
"""Shared test fixtures for all unit and integration tests.

Provides sample templates, settings rooted in a temp directory and an
engine factory over stub collaborators (see stubs.py). No network: HTTP
collaborators are exercised through httpx.MockTransport in their own tests.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from bulkdoc.config.settings import Settings
from bulkdoc.engine.scheduler import BatchEngine
from bulkdoc.notify.base_notifier import BaseNotifier
from bulkdoc.rendering.base_renderer import BaseRenderer
from bulkdoc.template.models import TemplateModel
from bulkdoc.template.parser import parse_template
from stubs import INVOICE_TEMPLATE, StubRenderer


@pytest.fixture
def invoice_template() -> TemplateModel:
    """Textual template with placeholders name, email and amount."""
    return parse_template(INVOICE_TEMPLATE, "text/plain", name="invoice.txt")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from any .env, rooted in tmp_path, fast retries."""
    return Settings(
        _env_file=None,
        working_root=tmp_path / "batches",
        max_concurrent_per_batch=8,
        default_batch_size=4,
        default_retry_attempts=0,
        default_retry_base_delay_ms=1,
        rate_limit_requests=1000,
        rate_limit_window_ms=1000,
        notifier_backend="none",
        progress_notify_thresholds="50",
    )


@pytest.fixture
def make_engine(settings: Settings) -> Callable[..., BatchEngine]:
    """Factory: BatchEngine over a StubRenderer unless one is given."""

    def factory(
        renderer: BaseRenderer | None = None,
        notifier: BaseNotifier | None = None,
        **overrides: object,
    ) -> BatchEngine:
        cfg = settings.model_copy(update=overrides) if overrides else settings
        return BatchEngine(cfg, renderer=renderer or StubRenderer(), notifier=notifier)

    return factory
