# src/records/parser.py - v1
"""Tabular record source: decode, validate headers, stream cleaned records.

``parse_records`` enforces every limit up front (size, row count, headers,
required columns) with a single pre-scan, then hands back a lazy
``RecordStream`` that yields each record exactly once.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from bulkdoc.core.errors import (
    DuplicateColumn,
    InvalidOptions,
    SchemaMismatch,
    SourceTooLarge,
    UnsupportedEncoding,
)
from bulkdoc.core.models import CellValue
from bulkdoc.records.detection import detect_bom, detect_delimiter, detect_encoding
from bulkdoc.records.models import (
    SUPPORTED_DELIMITERS,
    SUPPORTED_ENCODINGS,
    ParseOptions,
    SourceMetadata,
    SourceRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 100 * 1024 * 1024
DEFAULT_MAX_ROWS = 100_000

_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")
_BOOLEAN = re.compile(r"^(true|false)$", re.IGNORECASE)


def clean_value(raw: str | None) -> CellValue:
    """Trim a raw cell and coerce it to null, number, boolean or string."""
    if raw is None:
        return None
    value = raw.strip()
    if value == "":
        return None
    match = _NUMBER.match(value)
    if match:
        return float(value) if match.group(1) else int(value)
    if _BOOLEAN.match(value):
        return value.lower() == "true"
    return value


def _is_blank(row: list[str]) -> bool:
    return all(not cell.strip() for cell in row)


class RecordStream:
    """Lazy, finite, non-restartable sequence of SourceRecord.

    ``len()`` is known up front; iterating a second time raises RuntimeError.
    """

    def __init__(
        self,
        headers: list[str],
        total: int,
        producer: Iterable[SourceRecord],
    ) -> None:
        self.headers = list(headers)
        self._total = total
        self._producer = producer
        self._consumed = False

    @classmethod
    def from_rows(
        cls,
        headers: list[str],
        rows: Iterable[Mapping[str, CellValue]],
    ) -> RecordStream:
        """Build a stream from records already held in memory."""
        frozen = [MappingProxyType(dict(row)) for row in rows]
        return cls(
            headers,
            len(frozen),
            (SourceRecord(i, values) for i, values in enumerate(frozen, start=1)),
        )

    def __len__(self) -> int:
        return self._total

    def __iter__(self) -> Iterator[SourceRecord]:
        if self._consumed:
            raise RuntimeError("RecordStream can only be iterated once")
        self._consumed = True
        return iter(self._producer)

    @property
    def consumed(self) -> bool:
        return self._consumed


def parse_records(
    data: bytes,
    options: ParseOptions | None = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    max_rows: int = DEFAULT_MAX_ROWS,
) -> tuple[list[str], RecordStream, SourceMetadata]:
    """Parse a delimited text source into headers, a lazy record stream and metadata.

    Args:
        data: Raw uploaded bytes.
        options: Parse options; encoding/delimiter are auto-detected when unset.
        max_bytes: Size ceiling (SourceTooLarge above it).
        max_rows: Row ceiling (SourceTooLarge above it).

    Raises:
        SourceTooLarge, UnsupportedEncoding, DuplicateColumn, SchemaMismatch,
        InvalidOptions.
    """
    options = options or ParseOptions()
    _validate_options(options, max_rows)

    if len(data) > max_bytes:
        raise SourceTooLarge(
            f"Source is {len(data)} bytes; the limit is {max_bytes} bytes"
        )

    encoding = options.encoding or detect_encoding(data)
    text = _decode(data, encoding)
    delimiter = options.delimiter or detect_delimiter(text)

    headers, source_headers, data_start, warnings = _read_headers(text, delimiter, options)
    selection = _column_selection(headers, source_headers, options)
    final_headers = [name for name, _ in selection]

    if options.required_columns:
        missing = [c for c in options.required_columns if c not in final_headers]
        if missing:
            raise SchemaMismatch(missing)

    total, empty_columns, scan_warnings = _prescan(
        text, delimiter, data_start, selection, options, max_rows,
    )
    warnings.extend(scan_warnings)
    if total == 0:
        raise SchemaMismatch([], "Source contains headers but no data rows")

    metadata = SourceMetadata(
        encoding=encoding,
        delimiter=delimiter,
        has_header=options.has_header,
        byte_size=len(data),
        total_columns=len(final_headers),
        total_rows=total,
        empty_columns=empty_columns,
        warnings=warnings,
    )
    logger.info(
        "Parsed source: %d rows x %d columns (encoding=%s, delimiter=%r)",
        total, len(final_headers), encoding, delimiter,
    )

    stream = RecordStream(
        final_headers,
        total,
        _iter_records(text, delimiter, data_start, selection, options, total),
    )
    return final_headers, stream, metadata


def _validate_options(options: ParseOptions, max_rows: int) -> None:
    if options.encoding is not None and options.encoding.lower() not in SUPPORTED_ENCODINGS:
        raise InvalidOptions(f"Unsupported encoding option: {options.encoding!r}")
    if options.delimiter is not None and options.delimiter not in SUPPORTED_DELIMITERS:
        raise InvalidOptions(f"Unsupported delimiter option: {options.delimiter!r}")
    if options.max_rows is not None and options.max_rows > max_rows:
        raise InvalidOptions(f"max_rows must be between 1 and {max_rows}")


def _decode(data: bytes, encoding: str) -> str:
    _, bom_length = detect_bom(data)
    try:
        return data[bom_length:].decode(encoding)
    except UnicodeDecodeError as exc:
        raise UnsupportedEncoding(
            f"Source is not valid {encoding} at byte {exc.start + bom_length}"
        ) from exc


def _reader(text: str, delimiter: str) -> Iterator[list[str]]:
    return csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)


def _read_headers(
    text: str,
    delimiter: str,
    options: ParseOptions,
) -> tuple[list[str], list[str], int, list[str]]:
    """Return (headers, raw source headers, index of first data row, warnings)."""
    warnings: list[str] = []
    for position, row in enumerate(_reader(text, delimiter)):
        if not row or _is_blank(row):
            continue
        if not options.has_header:
            headers = [f"Column_{i + 1}" for i in range(len(row))]
            return headers, headers, position, warnings

        headers = []
        seen: set[str] = set()
        for i, cell in enumerate(row):
            name = cell.strip() or f"Column_{i + 1}"
            if not cell.strip():
                warnings.append(f"Blank header in column {i + 1} named {name!r}")
            if name in seen:
                raise DuplicateColumn(name)
            seen.add(name)
            headers.append(name)
        return headers, headers, position + 1, warnings

    raise SchemaMismatch([], "Source contains no header row")


def _column_selection(
    headers: list[str],
    source_headers: list[str],
    options: ParseOptions,
) -> list[tuple[str, int]]:
    """Resolve output column names to source positions, applying column_mapping."""
    if not options.column_mapping:
        return [(name, i) for i, name in enumerate(headers)]

    selection: list[tuple[str, int]] = []
    for new_name, old_name in options.column_mapping.items():
        if old_name not in source_headers:
            raise SchemaMismatch([old_name], f"Mapped column {old_name!r} not found in source")
        selection.append((new_name, source_headers.index(old_name)))
    names = [n for n, _ in selection]
    for name in names:
        if names.count(name) > 1:
            raise DuplicateColumn(name)
    return selection


def _data_rows(text: str, delimiter: str, data_start: int) -> Iterator[list[str]]:
    for position, row in enumerate(_reader(text, delimiter)):
        if position >= data_start:
            yield row


def _prescan(
    text: str,
    delimiter: str,
    data_start: int,
    selection: list[tuple[str, int]],
    options: ParseOptions,
    max_rows: int,
) -> tuple[int, list[str], list[str]]:
    """Count records and collect statistics without materialising them."""
    warnings: list[str] = []
    width = max((pos for _, pos in selection), default=-1) + 1
    filled = [False] * len(selection)
    widths: set[int] = set()
    total = 0
    truncated = False

    for row in _data_rows(text, delimiter, data_start):
        if not row or _is_blank(row):
            if not options.keep_empty_rows:
                continue
        if options.max_rows is not None and total >= options.max_rows:
            truncated = True
            break
        total += 1
        if total > max_rows:
            raise SourceTooLarge(f"Source has more than {max_rows} rows")
        widths.add(len(row))
        for i, (_, pos) in enumerate(selection):
            if pos < len(row) and row[pos].strip():
                filled[i] = True

    if truncated:
        warnings.append(f"Row limit reached ({options.max_rows}); remaining rows ignored")
    if len(widths) > 1:
        warnings.append("Inconsistent number of columns across rows")
    if widths and min(widths) < width:
        warnings.append("Some rows are shorter than the header; missing cells are null")

    empty_columns = [name for (name, _), seen in zip(selection, filled) if not seen]
    if empty_columns:
        warnings.append(f"Empty columns detected: {', '.join(empty_columns)}")
    return total, empty_columns, warnings


def _iter_records(
    text: str,
    delimiter: str,
    data_start: int,
    selection: list[tuple[str, int]],
    options: ParseOptions,
    total: int,
) -> Iterator[SourceRecord]:
    row_index = 0
    for row in _data_rows(text, delimiter, data_start):
        if not row or _is_blank(row):
            if not options.keep_empty_rows:
                continue
        if row_index >= total:
            return
        row_index += 1
        values = {
            name: clean_value(row[pos]) if pos < len(row) else None
            for name, pos in selection
        }
        yield SourceRecord(row_index, MappingProxyType(values))
