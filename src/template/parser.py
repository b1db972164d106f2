# src/template/parser.py - v1
"""Template parsing: placeholder discovery, substitution plan, inventory.

Textual templates (plain text, HTML, Markdown) get a byte-level
substitution plan. DOCX and PDF templates are scanned for their placeholder
inventory with python-docx and PyMuPDF; their bytes are never rewritten here.
"""

from __future__ import annotations

import codecs
import io
import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import NamedTuple

from bulkdoc.core.errors import TemplateError, UnsupportedFormat
from bulkdoc.template.models import (
    DELIMITERS,
    DOCX_MEDIA_TYPE,
    PDF_MEDIA_TYPE,
    TEXT_MEDIA_TYPES,
    DelimiterKind,
    PlaceholderInfo,
    SubstitutionSite,
    TemplateKind,
    TemplateModel,
    ValueKind,
)

logger = logging.getLogger(__name__)

_NAME = r"([A-Za-z0-9_ ]+)"

_PATTERNS: tuple[tuple[DelimiterKind, re.Pattern[str]], ...] = tuple(
    (kind, re.compile(re.escape(open_) + _NAME + re.escape(close)))
    for kind, (open_, close) in DELIMITERS.items()
)
_PRIORITY: dict[DelimiterKind, int] = {kind: i for i, kind in enumerate(DELIMITERS)}

_MEDIA_TYPES_BY_SUFFIX: dict[str, str] = {
    ".txt": "text/plain",
    ".text": "text/plain",
    ".html": "text/html",
    ".htm": "text/html",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".docx": DOCX_MEDIA_TYPE,
    ".pdf": PDF_MEDIA_TYPE,
}

_VALUE_KIND_TOKENS: tuple[tuple[ValueKind, frozenset[str]], ...] = (
    ("email", frozenset({"email", "mail"})),
    ("phone", frozenset({"phone", "telephone", "mobile", "cell", "fax", "tel"})),
    ("url", frozenset({"url", "website", "link", "href"})),
    ("date", frozenset({
        "date", "time", "created", "updated", "birth", "birthday", "dob",
        "hire", "start", "end", "deadline", "due",
    })),
    ("currency", frozenset({
        "amount", "price", "cost", "total", "fee", "salary", "balance", "payment",
    })),
    ("number", frozenset({
        "count", "quantity", "qty", "rate", "percentage", "percent", "age",
        "year", "month", "day", "number", "num", "score",
    })),
)
_BOOLEAN_PREFIXES = frozenset({"is", "has", "can", "should", "will"})
_BOOLEAN_TOKENS = frozenset({"active", "enabled", "visible", "required"})


class Match(NamedTuple):
    """A placeholder occurrence in decoded text (character offsets)."""

    start: int
    end: int
    kind: DelimiterKind
    name: str


def find_sites(text: str) -> list[Match]:
    """Find placeholder occurrences in ``text``, left to right, non-overlapping.

    When candidates overlap, the earliest start wins; at the same start the
    delimiter order ``{{ }}``, ``[ ]``, ``$ $``, ``% %`` decides.
    """
    candidates: list[Match] = []
    for kind, pattern in _PATTERNS:
        for m in pattern.finditer(text):
            name = m.group(1).strip()
            if name:
                candidates.append(Match(m.start(), m.end(), kind, name))
    candidates.sort(key=lambda c: (c.start, _PRIORITY[c.kind]))

    chosen: list[Match] = []
    cursor = 0
    for candidate in candidates:
        if candidate.start >= cursor:
            chosen.append(candidate)
            cursor = candidate.end
    return chosen


def infer_value_kind(name: str) -> ValueKind:
    """Guess what a placeholder holds from its name (``customerEmail`` -> email)."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", name)
    tokens = re.findall(r"[a-z]+", spaced.lower())
    if not tokens:
        return "text"
    for kind, vocabulary in _VALUE_KIND_TOKENS:
        if vocabulary.intersection(tokens):
            return kind
    if tokens[0] in _BOOLEAN_PREFIXES or _BOOLEAN_TOKENS.intersection(tokens):
        return "boolean"
    return "text"


def media_type_for(filename: str | Path) -> str:
    """Map a template file name to its media type.

    Raises:
        UnsupportedFormat: For any other extension.
    """
    suffix = Path(filename).suffix.lower()
    try:
        return _MEDIA_TYPES_BY_SUFFIX[suffix]
    except KeyError:
        raise UnsupportedFormat(f"Unsupported template type: {suffix or filename!s}") from None


def parse_template(
    data: bytes,
    media_type: str,
    name: str | None = None,
    optional: Iterable[str] = (),
) -> TemplateModel:
    """Parse template bytes into an immutable TemplateModel.

    Args:
        data: Template file content.
        media_type: One of text/plain, text/html, text/markdown, DOCX or PDF.
        name: Display name carried into metadata and notifications.
        optional: Placeholder names that may be missing from records.

    Raises:
        UnsupportedFormat: Unknown media type.
        TemplateError: Undecodable or unreadable template.
    """
    media_type = media_type.split(";", 1)[0].strip().lower()
    name = name or "template"

    kind: TemplateKind
    encoding: str | None = None
    plan: tuple[SubstitutionSite, ...] = ()
    if media_type in TEXT_MEDIA_TYPES:
        kind = "text"
        encoding, bom_length, text = _decode_text(data, name)
        plan = tuple(_byte_plan(text, encoding, bom_length))
        matches = [(site.name, site.kind) for site in plan]
    elif media_type == DOCX_MEDIA_TYPE:
        kind = "docx"
        matches = [(m.name, m.kind) for text in _docx_texts(data, name) for m in find_sites(text)]
    elif media_type == PDF_MEDIA_TYPE:
        kind = "pdf"
        matches = [(m.name, m.kind) for text in _pdf_texts(data, name) for m in find_sites(text)]
    else:
        raise UnsupportedFormat(f"Unsupported template media type: {media_type}")

    placeholders = tuple(dict.fromkeys(n for n, _ in matches))
    optional_names = frozenset(optional)
    required = frozenset(placeholders) - optional_names

    inventory = tuple(
        PlaceholderInfo(
            name=p,
            occurrences=sum(1 for n, _ in matches if n == p),
            kinds=tuple(dict.fromkeys(k for n, k in matches if n == p)),
            value_kind=infer_value_kind(p),
            required=p in required,
        )
        for p in placeholders
    )

    logger.info(
        "Parsed %s template %s: %d placeholders, %d sites",
        kind, name, len(placeholders), len(matches),
    )
    return TemplateModel(
        name=name,
        kind=kind,
        media_type=media_type,
        body=data,
        encoding=encoding,
        placeholders=placeholders,
        plan=plan,
        required=required,
        inventory=inventory,
    )


def _decode_text(data: bytes, name: str) -> tuple[str, int, str]:
    """Return (encoding, bom_length, text) for a textual template."""
    if data.startswith(codecs.BOM_UTF8):
        encoding, bom_length = "utf-8", len(codecs.BOM_UTF8)
    elif data.startswith(codecs.BOM_UTF16_LE):
        encoding, bom_length = "utf-16le", len(codecs.BOM_UTF16_LE)
    else:
        encoding, bom_length = "utf-8", 0
    try:
        return encoding, bom_length, data[bom_length:].decode(encoding)
    except UnicodeDecodeError as exc:
        raise TemplateError(f"Template {name} is not valid {encoding} text") from exc


def _byte_plan(text: str, encoding: str, bom_length: int) -> Iterable[SubstitutionSite]:
    byte_pos = bom_length
    char_pos = 0
    for m in find_sites(text):
        byte_pos += len(text[char_pos:m.start].encode(encoding))
        length = len(text[m.start:m.end].encode(encoding))
        yield SubstitutionSite(offset=byte_pos, length=length, kind=m.kind, name=m.name)
        byte_pos += length
        char_pos = m.end


def open_docx(data: bytes, name: str = "template"):
    """Open DOCX bytes with python-docx.

    Raises:
        TemplateError: If the bytes are not a readable DOCX package.
    """
    try:
        import docx
    except ImportError as e:
        raise ImportError(
            "python-docx package required for DOCX templates: pip install python-docx"
        ) from e
    try:
        return docx.Document(io.BytesIO(data))
    except Exception as exc:
        raise TemplateError(f"Template {name} is not a readable DOCX file: {exc}") from exc


def docx_paragraphs(document) -> Iterable:
    """Every paragraph of a document: body, table cells, headers and footers."""
    yield from document.paragraphs
    for table in document.tables:
        for row in table.rows:
            for cell in row.cells:
                yield from cell.paragraphs
    for section in document.sections:
        for part in (section.header, section.footer):
            if not part.is_linked_to_previous:
                yield from part.paragraphs


def _docx_texts(data: bytes, name: str) -> list[str]:
    return [p.text for p in docx_paragraphs(open_docx(data, name)) if p.text]


def open_pdf(data: bytes, name: str = "template"):
    """Open PDF bytes with PyMuPDF.

    Raises:
        TemplateError: If the bytes are not a readable PDF.
    """
    try:
        import fitz  # PyMuPDF
    except ImportError as e:
        raise ImportError(
            "pymupdf package required for PDF templates: pip install pymupdf"
        ) from e
    try:
        return fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise TemplateError(f"Template {name} is not a readable PDF file: {exc}") from exc


def _pdf_texts(data: bytes, name: str) -> list[str]:
    doc = open_pdf(data, name)
    try:
        return [doc[i].get_text("text") for i in range(len(doc))]
    finally:
        doc.close()
