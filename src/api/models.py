# src/api/models.py - v2
"""API-level models: uploads in, submission receipts out."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from bulkdoc.core.models import BatchStatus, OutputFormat
from bulkdoc.records.models import SourceMetadata
from bulkdoc.template.models import PlaceholderInfo


class UploadedFile(BaseModel):
    """A file handed to the service as raw bytes."""

    model_config = ConfigDict(frozen=True)

    content: bytes
    filename: str
    media_type: str | None = None

    @property
    def extension(self) -> str:
        _, dot, ext = self.filename.rpartition(".")
        return ext.lower() if dot else "bin"


class SubmitResult(BaseModel):
    """Receipt returned by BulkDocService.submit()."""

    batch_id: str
    status: BatchStatus
    total_records: int
    output_format: OutputFormat
    estimated_seconds: float | None = None
    template_name: str
    placeholders: list[PlaceholderInfo] = Field(default_factory=list)
    source: SourceMetadata
