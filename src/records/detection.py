# src/records/detection.py - v1
"""Encoding and delimiter detection for uploaded tabular sources."""

from __future__ import annotations

import codecs
import csv
import io
import logging
import re

from bulkdoc.core.errors import UnsupportedEncoding
from bulkdoc.records.models import SUPPORTED_DELIMITERS, SUPPORTED_ENCODINGS

logger = logging.getLogger(__name__)

SAMPLE_BYTES = 8192
SAMPLE_LINES = 5

_BOMS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16le"),
)

# C0 controls other than tab/LF/CR, DEL and the C1 block never appear in
# legitimate tabular text; seeing them means the candidate decoded garbage.
_IMPLAUSIBLE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f�]")


def detect_bom(data: bytes) -> tuple[str | None, int]:
    """Return (encoding, bom_length) if the data starts with a known BOM."""
    for bom, encoding in _BOMS:
        if data.startswith(bom):
            return encoding, len(bom)
    return None, 0


def _decodes_cleanly(sample: bytes, encoding: str) -> bool:
    decoder = codecs.getincrementaldecoder(encoding)(errors="strict")
    try:
        # final=False tolerates a multi-byte sequence cut at the sample edge
        text = decoder.decode(sample, final=False)
    except UnicodeDecodeError:
        return False
    if _IMPLAUSIBLE.search(text):
        return False
    if encoding == "utf-16le" and not any(c in text for c in (*SUPPORTED_DELIMITERS, "\n")):
        # byte pairs of 8-bit text decode to plausible CJK without any structure
        return False
    return bool(text.strip())


def detect_encoding(data: bytes, candidates: tuple[str, ...] = SUPPORTED_ENCODINGS) -> str:
    """Detect the source encoding by BOM, then by clean decode of the first 8 KiB.

    Raises:
        UnsupportedEncoding: If no candidate decodes the sample cleanly.
    """
    encoding, _ = detect_bom(data)
    if encoding is not None:
        return encoding

    sample = data[:SAMPLE_BYTES]
    for candidate in candidates:
        if _decodes_cleanly(sample, candidate):
            logger.debug("Detected encoding %s", candidate)
            return candidate

    raise UnsupportedEncoding(
        f"Could not decode source with any of: {', '.join(candidates)}"
    )


def _field_counts(lines: list[str], delimiter: str) -> list[int]:
    reader = csv.reader(io.StringIO("\n".join(lines)), delimiter=delimiter)
    return [len(row) for row in reader if row]


def detect_delimiter(text: str, candidates: tuple[str, ...] = SUPPORTED_DELIMITERS) -> str:
    """Pick the delimiter that splits the first non-empty lines most consistently.

    A delimiter is consistent when every sampled line yields the same field
    count above one; the highest consistent count wins, ties going to the
    earlier candidate. With no consistent candidate, the one with the
    largest total field count wins. Defaults to a comma.
    """
    lines = [line for line in text.splitlines() if line.strip()][:SAMPLE_LINES]
    if not lines:
        return ","

    best: str | None = None
    best_width = 1
    fallback = ","
    fallback_total = 0
    for delimiter in candidates:
        counts = _field_counts(lines, delimiter)
        if not counts:
            continue
        if len(set(counts)) == 1 and counts[0] > best_width:
            best, best_width = delimiter, counts[0]
        total = sum(counts)
        if total > fallback_total and max(counts) > 1:
            fallback, fallback_total = delimiter, total

    return best if best is not None else fallback
