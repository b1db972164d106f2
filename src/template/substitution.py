# src/template/substitution.py - v1
"""Placeholder substitution for textual templates.

Values are formatted the same way everywhere: integers and integral floats
without a fractional part, other floats in plain decimal notation (no
exponent, no grouping), booleans as ``true``/``false`` and nulls as the
empty string.
"""

from __future__ import annotations

import codecs
import json
import math
from datetime import datetime
from decimal import Decimal

from bulkdoc.core.errors import MissingRequiredField, TemplateError
from bulkdoc.core.models import CellValue, OutputOptions, Record, utcnow
from bulkdoc.template.models import TemplateModel
from bulkdoc.template.parser import find_sites

METADATA_PREFIX = "<!-- Metadata: "
WATERMARK_PREFIX = "<!-- Watermark: "
ENVELOPE_SUFFIX = " -->"


def format_value(value: CellValue) -> str:
    """Format a cell value for insertion into a document."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return str(value)
        if value.is_integer():
            return str(int(value))
        return format(Decimal(repr(value)), "f")
    return str(value)


def resolve(
    template: TemplateModel,
    record: Record,
    name: str,
    row_index: int | None = None,
) -> str | None:
    """Resolve one placeholder to its text.

    Returns None when an optional placeholder has no column in the record,
    meaning the literal placeholder text stays in place.

    Raises:
        MissingRequiredField: A required placeholder is absent or null.
    """
    if name not in record:
        if name in template.required:
            raise MissingRequiredField(name, row_index)
        return None
    value = record[name]
    if value is None and name in template.required:
        raise MissingRequiredField(name, row_index)
    return format_value(value)


def substitute_str(
    text: str,
    template: TemplateModel,
    record: Record,
    row_index: int | None = None,
) -> str:
    """Substitute placeholders in an arbitrary string (DOCX runs, PDF pages)."""
    parts: list[str] = []
    cursor = 0
    for m in find_sites(text):
        value = resolve(template, record, m.name, row_index)
        parts.append(text[cursor:m.start])
        parts.append(text[m.start:m.end] if value is None else value)
        cursor = m.end
    parts.append(text[cursor:])
    return "".join(parts)


def bom_length(template: TemplateModel) -> int:
    for bom in (codecs.BOM_UTF8, codecs.BOM_UTF16_LE):
        if template.body.startswith(bom):
            return len(bom)
    return 0


def substitute_body(
    template: TemplateModel,
    record: Record,
    row_index: int | None = None,
) -> bytes:
    """Apply the byte-level plan; bytes outside substitution sites are copied verbatim."""
    if not template.is_textual or template.encoding is None:
        raise TemplateError(f"Template {template.name} is {template.kind}; no byte-level plan")
    body = template.body
    out = bytearray()
    cursor = 0
    for site in template.plan:
        value = resolve(template, record, site.name, row_index)
        out += body[cursor:site.offset]
        out += body[site.offset:site.end] if value is None else value.encode(template.encoding)
        cursor = site.end
    out += body[cursor:]
    return bytes(out)


def metadata_envelope(
    template: TemplateModel,
    row_index: int,
    generated_at: datetime | None = None,
) -> str:
    payload = {
        "generatedAt": (generated_at or utcnow()).isoformat(),
        "templateName": template.name,
        "rowIndex": row_index,
    }
    return f"{METADATA_PREFIX}{json.dumps(payload)}{ENVELOPE_SUFFIX}\n"


def watermark_envelope(text: str) -> str:
    return f"\n{WATERMARK_PREFIX}{text}{ENVELOPE_SUFFIX}\n"


def render_text(
    template: TemplateModel,
    record: Record,
    row_index: int,
    options: OutputOptions | None = None,
    generated_at: datetime | None = None,
) -> bytes:
    """Render a textual template for one record, with optional envelopes.

    The metadata envelope goes on its own first line (after any BOM); the
    watermark envelope is appended at the end.

    Raises:
        MissingRequiredField: A required value is missing.
        TemplateError: The template is not textual.
    """
    rendered = substitute_body(template, record, row_index)
    if options is None or not (options.include_metadata or options.watermark):
        return rendered

    encoding = template.encoding or "utf-8"
    head = bom_length(template)
    out = bytearray(rendered[:head])
    if options.include_metadata:
        out += metadata_envelope(template, row_index, generated_at).encode(encoding)
    out += rendered[head:]
    if options.watermark:
        out += watermark_envelope(options.watermark).encode(encoding)
    return bytes(out)
