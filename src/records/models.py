# src/records/models.py - v1
"""Record source models: ParseOptions, SourceMetadata, SourceRecord."""

from __future__ import annotations

from collections.abc import Mapping
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from bulkdoc.core.models import CellValue

SUPPORTED_ENCODINGS: tuple[str, ...] = ("utf-8", "utf-16le", "latin-1", "cp1252", "iso-8859-1")
SUPPORTED_DELIMITERS: tuple[str, ...] = (",", ";", "\t", "|")


class ParseOptions(BaseModel):
    """Caller options for parsing a tabular source. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    encoding: str | None = None
    delimiter: str | None = None
    has_header: bool = True
    keep_empty_rows: bool = False
    max_rows: int | None = Field(default=None, ge=1)
    column_mapping: dict[str, str] | None = None
    required_columns: list[str] | None = None


class SourceMetadata(BaseModel):
    """What the parser learned about a source before yielding any record."""

    encoding: str
    delimiter: str
    has_header: bool
    byte_size: int
    total_columns: int
    total_rows: int
    empty_columns: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class SourceRecord(NamedTuple):
    """One parsed record with its stable 1-based row index."""

    row_index: int
    values: Mapping[str, CellValue]
