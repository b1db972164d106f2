# src/rendering/base_renderer.py - v1
"""Abstract renderer interface.

A renderer turns (template, record, options) into document bytes. It raises
TemplateError, RecordFailure subclasses, UpstreamTransient, UpstreamFatal or
RenderTimeout; rate limiting and retries live in RenderService, not here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from bulkdoc.core.models import OutputOptions, Record
from bulkdoc.template.models import TemplateModel


class BaseRenderer(ABC):
    """Unified interface for rendering backends."""

    @abstractmethod
    async def render(
        self,
        template: TemplateModel,
        record: Record,
        options: OutputOptions,
        row_index: int,
        idempotency_key: str | None = None,
    ) -> bytes:
        """Render one record into document bytes."""

    async def prepare(self, template: TemplateModel, options: OutputOptions) -> None:
        """Validate a template once per batch, before any record is rendered.

        Raises:
            TemplateError: If this backend cannot render the template.
        """

    async def close(self) -> None:
        """Release backend resources."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Backend identifier (local, remote)."""
