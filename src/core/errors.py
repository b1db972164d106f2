# src/core/errors.py - v1
"""Error hierarchy surfaced by the engine and its collaborators.

Each error carries a semantic ``category`` and a stable ``code``. Per-record
failures are stringified into DocumentResult entries via ``describe_error``;
validation failures reject a submission before any batch exists.
"""

from __future__ import annotations

from typing import Literal

ErrorCategory = Literal[
    "validation",
    "record",
    "template",
    "upstream_transient",
    "upstream_fatal",
    "engine",
    "operational",
    "lookup",
]


class BulkDocError(Exception):
    """Base class for all bulkdoc errors."""

    category: ErrorCategory = "engine"
    code: str = "BULKDOC_ERROR"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


# === Validation (submission rejected, no batch created) ===


class ValidationFailure(BulkDocError):
    category: ErrorCategory = "validation"
    code = "VALIDATION_ERROR"


class SchemaMismatch(ValidationFailure):
    """Required placeholders or columns are absent from the record headers."""

    code = "SCHEMA_MISMATCH"

    def __init__(self, missing: list[str], message: str = "") -> None:
        self.missing = list(missing)
        super().__init__(
            message or f"Missing required columns: {', '.join(self.missing)}"
        )


class UnsupportedFormat(ValidationFailure):
    code = "UNSUPPORTED_FORMAT"


class SourceTooLarge(ValidationFailure):
    code = "SOURCE_TOO_LARGE"


class DuplicateColumn(ValidationFailure):
    code = "DUPLICATE_COLUMN"

    def __init__(self, column: str) -> None:
        self.column = column
        super().__init__(f"Duplicate column header: {column!r}")


class UnsupportedEncoding(ValidationFailure):
    code = "UNSUPPORTED_ENCODING"


class InvalidOptions(ValidationFailure):
    code = "INVALID_OPTIONS"


# === Per-record (contained, batch continues) ===


class RecordFailure(BulkDocError):
    category: ErrorCategory = "record"
    code = "RECORD_ERROR"


class MissingRequiredField(RecordFailure):
    code = "MISSING_REQUIRED_FIELD"

    def __init__(self, name: str, row_index: int | None = None) -> None:
        self.name = name
        self.row_index = row_index
        where = f" in row {row_index}" if row_index is not None else ""
        super().__init__(f"Required field {name!r} has no value{where}")


class RecordError(RecordFailure):
    code = "RECORD_ERROR"


class TemplateError(BulkDocError):
    category: ErrorCategory = "template"
    code = "TEMPLATE_ERROR"


# === Upstream ===


class UpstreamError(BulkDocError):
    category: ErrorCategory = "upstream_transient"
    code = "UPSTREAM_ERROR"

    def __init__(self, message: str = "", status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class UpstreamTransient(UpstreamError):
    code = "UPSTREAM_TRANSIENT"


class RenderTimeout(UpstreamError):
    code = "TIMEOUT"


class UpstreamFatal(UpstreamError):
    category: ErrorCategory = "upstream_fatal"
    code = "UPSTREAM_FATAL"


RETRYABLE_ERRORS: tuple[type[BulkDocError], ...] = (UpstreamTransient, RenderTimeout)


# === Engine-fatal (batch transitions to failed) ===


class EngineFailure(BulkDocError):
    category: ErrorCategory = "engine"
    code = "ENGINE_ERROR"


class ArchiveError(EngineFailure):
    code = "ARCHIVE_ERROR"


class WorkingDirectoryError(EngineFailure):
    code = "WORKING_DIRECTORY_UNAVAILABLE"


# === Operational ===


class NotificationError(BulkDocError):
    category: ErrorCategory = "operational"
    code = "NOTIFICATION_ERROR"


# === Lookup / state ===


class BatchNotFound(BulkDocError):
    category: ErrorCategory = "lookup"
    code = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str) -> None:
        self.batch_id = batch_id
        super().__init__(f"Batch not found: {batch_id}")


class ArchiveUnavailable(BulkDocError):
    category: ErrorCategory = "lookup"
    code = "ARCHIVE_UNAVAILABLE"


def describe_error(error: BaseException) -> str:
    """Render an error as the human-readable string stored on a batch."""
    if isinstance(error, BulkDocError):
        return f"{error.code}: {error.message}"
    return f"{type(error).__name__}: {error}"


class InvalidStateTransition(BulkDocError):
    """A batch was asked to move along an edge the state machine does not have."""

    category: ErrorCategory = "engine"
    code = "INVALID_STATE_TRANSITION"
