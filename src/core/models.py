# src/core/models.py - v2
"""Shared Pydantic domain models used across modules.

Records, output options, batches and their read-only snapshots. No module
redefines these types; all imports come from core.models.
"""

from __future__ import annotations

import bisect
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from bulkdoc.core.errors import InvalidOptions, InvalidStateTransition

# === RECORDS ===

CellValue = Union[str, int, float, bool, None]
Record = Mapping[str, CellValue]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# === OUTPUT OPTIONS ===

OutputFormat = Literal["pdf", "docx", "txt"]
Quality = Literal["low", "medium", "high"]


class OutputOptions(BaseModel):
    """Per-batch output configuration.

    Unknown keys are rejected. Accepts both snake_case and camelCase keys
    (``includeMetadata``, ``retryAttempts``...). ``None`` for the pool width
    and retry fields means "use the engine default".
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    format: OutputFormat = "pdf"
    quality: Quality = "medium"
    include_metadata: bool = False
    watermark: str | None = None
    password: str | None = None
    batch_size: int | None = Field(default=None, ge=1)
    retry_attempts: int | None = Field(default=None, ge=0, le=10)
    retry_base_delay_ms: int | None = Field(default=None, ge=1)

    @field_validator("watermark", "password")
    @classmethod
    def blank_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @classmethod
    def parse(cls, data: Mapping[str, object] | None) -> OutputOptions:
        """Build options from a caller-supplied mapping.

        Raises:
            InvalidOptions: On unknown keys or out-of-range values.
        """
        try:
            return cls.model_validate(dict(data or {}))
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'options'}: {err['msg']}"
                for err in exc.errors()
            )
            raise InvalidOptions(f"Invalid output options: {problems}") from exc

    def with_defaults(
        self,
        batch_size: int,
        retry_attempts: int,
        retry_base_delay_ms: int,
    ) -> OutputOptions:
        """Return a copy with engine defaults filled into unset fields."""
        return self.model_copy(
            update={
                "batch_size": self.batch_size or batch_size,
                "retry_attempts": (
                    self.retry_attempts if self.retry_attempts is not None else retry_attempts
                ),
                "retry_base_delay_ms": self.retry_base_delay_ms or retry_base_delay_ms,
            }
        )

    @property
    def extension(self) -> str:
        return self.format


# === BATCH ===

BatchStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})

# Position in the state machine; a later snapshot never has a lower rank.
STATUS_RANK: dict[str, int] = {
    "pending": 0,
    "processing": 1,
    "completed": 2,
    "failed": 2,
    "cancelled": 2,
}

_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"completed", "failed", "cancelled"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}


class BatchTotals(BaseModel):
    """Document counts. completed + failed never exceeds total."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(ge=0)
    completed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)

    @property
    def processed(self) -> int:
        return self.completed + self.failed

    @model_validator(mode="after")
    def check_counts(self) -> BatchTotals:
        if self.completed + self.failed > self.total:
            raise ValueError("completed + failed must not exceed total")
        return self


class DocumentResult(BaseModel):
    """Outcome of rendering one record. Exactly one of file_path / error is set."""

    model_config = ConfigDict(frozen=True)

    row_index: int = Field(ge=1)
    status: Literal["completed", "failed"]
    file_name: str | None = None
    file_path: Path | None = None
    file_size: int | None = None
    error: str | None = None
    attempts: int = 1
    produced_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_outcome(self) -> DocumentResult:
        if (self.file_path is None) == (self.error is None):
            raise ValueError("exactly one of file_path and error must be set")
        if self.status == "completed" and self.file_path is None:
            raise ValueError("completed results need a file_path")
        if self.status == "failed" and self.error is None:
            raise ValueError("failed results need an error")
        return self


class BatchSummary(BaseModel):
    """Minimal batch identity and counts carried by notification events."""

    model_config = ConfigDict(frozen=True)

    batch_id: str
    status: BatchStatus
    progress: int
    totals: BatchTotals
    template_name: str | None = None
    output_format: OutputFormat = "pdf"
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None


class BatchSnapshot(BaseModel):
    """Immutable view of a batch handed to readers.

    ``results`` is always in ascending row order, whatever order the
    workers appended them in.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    status: BatchStatus
    progress: int
    totals: BatchTotals
    results: tuple[DocumentResult, ...] = ()
    errors: tuple[str, ...] = ()
    archive_path: Path | None = None
    template_name: str | None = None
    options: OutputOptions = Field(default_factory=OutputOptions)
    estimated_seconds: float | None = None
    cancel_requested: bool = False
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def finished_at(self) -> datetime | None:
        return self.completed_at or self.failed_at or self.cancelled_at

    def summary(self) -> BatchSummary:
        return BatchSummary(
            batch_id=self.id,
            status=self.status,
            progress=self.progress,
            totals=self.totals,
            template_name=self.template_name,
            output_format=self.options.format,
            created_at=self.created_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


class Batch(BaseModel):
    """Mutable batch state. Owned by the state store; mutate only under its lock."""

    id: str
    status: BatchStatus = "pending"
    progress: int = 0
    total: int = Field(ge=0)
    completed: int = 0
    failed: int = 0
    results: list[DocumentResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    error_limit: int = 100
    archive_path: Path | None = None
    working_dir: Path | None = None
    template_name: str | None = None
    options: OutputOptions = Field(default_factory=OutputOptions)
    estimated_seconds: float | None = None
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None

    _rows_seen: set[int] = PrivateAttr(default_factory=set)
    _latest_result_at: datetime | None = PrivateAttr(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def finished_at(self) -> datetime | None:
        return self.completed_at or self.failed_at or self.cancelled_at

    # --- Mutations ---

    def add_result(self, result: DocumentResult) -> None:
        """Append a result and recompute counts and progress."""
        if self.is_terminal:
            raise InvalidStateTransition(f"Batch {self.id} is {self.status}; results are closed")
        if result.row_index in self._rows_seen:
            raise InvalidStateTransition(
                f"Batch {self.id} already has a result for row {result.row_index}"
            )
        if self.completed + self.failed >= self.total:
            raise InvalidStateTransition(f"Batch {self.id} already has {self.total} results")
        bisect.insort(self.results, result, key=lambda r: r.row_index)
        self._rows_seen.add(result.row_index)
        if self._latest_result_at is None or result.produced_at > self._latest_result_at:
            self._latest_result_at = result.produced_at
        if result.status == "completed":
            self.completed += 1
        else:
            self.failed += 1
        if self.total:
            self.progress = max(self.progress, (self.completed + self.failed) * 100 // self.total)

    def add_error(self, message: str) -> None:
        """Append to the bounded error ring, dropping the oldest entries."""
        self.errors.append(message)
        overflow = len(self.errors) - self.error_limit
        if overflow > 0:
            del self.errors[:overflow]

    def transition(self, status: BatchStatus, at: datetime | None = None) -> datetime:
        """Move to ``status`` and stamp the matching timestamp exactly once.

        Returns the timestamp used. Timestamps never go backwards relative
        to the ones already on the batch.
        """
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStateTransition(
                f"Batch {self.id}: {self.status} -> {status} is not allowed"
            )
        stamp = self._monotonic(at or utcnow())
        if status == "processing":
            self.started_at = stamp
        elif status == "completed":
            self.completed_at = stamp
        elif status == "failed":
            self.failed_at = stamp
        elif status == "cancelled":
            self.cancelled_at = stamp
        self.status = status
        return stamp

    def _monotonic(self, candidate: datetime) -> datetime:
        stamps = [self.created_at, self.started_at, self._latest_result_at]
        latest = max(s for s in stamps if s is not None)
        return candidate if candidate >= latest else latest

    def snapshot(self, include_results: bool = True) -> BatchSnapshot:
        """Copy the batch into an immutable snapshot.

        Progress observations skip the results slice; status reads include it.
        """
        return BatchSnapshot(
            id=self.id,
            status=self.status,
            progress=self.progress,
            totals=BatchTotals(total=self.total, completed=self.completed, failed=self.failed),
            results=tuple(self.results) if include_results else (),
            errors=tuple(self.errors),
            archive_path=self.archive_path,
            template_name=self.template_name,
            options=self.options,
            estimated_seconds=self.estimated_seconds,
            cancel_requested=self.cancel_requested,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            failed_at=self.failed_at,
            cancelled_at=self.cancelled_at,
        )


class Page(BaseModel):
    """One page of a batch listing, newest first."""

    items: list[BatchSnapshot] = Field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0
