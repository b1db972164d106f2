# src/rendering/local_renderer.py - v1
"""In-process renderer: txt, DOCX (python-docx) and PDF (PyMuPDF) output.

Textual templates render to any format. DOCX templates are substituted run
by run and render to docx, or to txt/pdf from their paragraph text. PDF
templates cannot be rewritten locally and need the remote backend.
"""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import Callable

from bulkdoc.core.errors import RecordError, TemplateError
from bulkdoc.core.models import OutputOptions, Record, utcnow
from bulkdoc.rendering.base_renderer import BaseRenderer
from bulkdoc.template.models import TemplateModel
from bulkdoc.template.parser import Match, docx_paragraphs, find_sites, open_docx
from bulkdoc.template.substitution import (
    bom_length,
    metadata_envelope,
    render_text,
    resolve,
    substitute_body,
    substitute_str,
    watermark_envelope,
)

logger = logging.getLogger(__name__)

# PyMuPDF save options per quality level
_PDF_SAVE_OPTIONS: dict[str, dict[str, object]] = {
    "low": {"garbage": 4, "deflate": True, "clean": True},
    "medium": {"garbage": 3, "deflate": True},
    "high": {"garbage": 1, "deflate": False},
}

_PAGE_MARGIN = 72
_FONT_SIZE = 11
_LINE_HEIGHT = 14
_WATERMARK_COLOR = (0.85, 0.85, 0.85)


class LocalRenderer(BaseRenderer):
    """Render documents without any network call."""

    @property
    def backend_name(self) -> str:
        return "local"

    async def prepare(self, template: TemplateModel, options: OutputOptions) -> None:
        if template.kind == "pdf":
            raise TemplateError(
                f"Template {template.name} is a PDF; PDF templates need RENDERER_BACKEND=remote"
            )
        if template.kind == "docx":
            open_docx(template.body, template.name)
        if options.password and options.format != "pdf":
            logger.warning("Password protection only applies to pdf output; ignoring it")

    async def render(
        self,
        template: TemplateModel,
        record: Record,
        options: OutputOptions,
        row_index: int,
        idempotency_key: str | None = None,
    ) -> bytes:
        # Resolve required values up front so record errors surface before any I/O
        for name in template.placeholders:
            resolve(template, record, name, row_index)
        return await asyncio.to_thread(self._render_sync, template, record, options, row_index)

    def _render_sync(
        self,
        template: TemplateModel,
        record: Record,
        options: OutputOptions,
        row_index: int,
    ) -> bytes:
        if template.kind == "docx":
            if options.format == "docx":
                return _render_docx_template(template, record, options, row_index)
            lines = _docx_template_lines(template, record, row_index)
        elif options.format == "txt":
            return render_text(template, record, row_index, options)
        else:
            lines = _text_lines(template, record, row_index)

        if options.format == "txt":
            text = "\n".join(lines)
            if options.include_metadata or options.watermark:
                # reuse the envelope layout of textual templates
                text = _envelope_text(template, text, options, row_index)
            return text.encode("utf-8")
        if options.format == "docx":
            return _build_docx(lines, template, options, row_index)
        return _build_pdf(lines, template, options, row_index)


def _text_lines(template: TemplateModel, record: Record, row_index: int) -> list[str]:
    rendered = substitute_body(template, record, row_index)
    try:
        text = rendered[bom_length(template):].decode(template.encoding or "utf-8")
    except UnicodeDecodeError as exc:
        raise RecordError(f"Row {row_index} produced undecodable text: {exc}") from exc
    return text.splitlines()


def _envelope_text(template: TemplateModel, text: str, options: OutputOptions, row_index: int) -> str:
    if options.include_metadata:
        text = metadata_envelope(template, row_index) + text
    if options.watermark:
        text += watermark_envelope(options.watermark)
    return text


# === DOCX ===


def _substitute_runs(texts: list[str], replace: Callable[[Match, str], str]) -> list[str] | None:
    """Substitute placeholders inside runs; None if one spans several runs."""
    joined = "".join(texts)
    bounds: list[tuple[int, int]] = []
    pos = 0
    for t in texts:
        bounds.append((pos, pos + len(t)))
        pos += len(t)

    per_run: list[list[Match]] = [[] for _ in texts]
    for m in find_sites(joined):
        owner = next(
            (i for i, (lo, hi) in enumerate(bounds) if lo <= m.start and m.end <= hi),
            None,
        )
        if owner is None:
            return None
        per_run[owner].append(m)

    result: list[str] = []
    for (lo, _), text, matches in zip(bounds, texts, per_run):
        parts: list[str] = []
        cursor = 0
        for m in matches:
            parts.append(text[cursor:m.start - lo])
            parts.append(replace(m, joined[m.start:m.end]))
            cursor = m.end - lo
        parts.append(text[cursor:])
        result.append("".join(parts))
    return result


def _render_docx_template(
    template: TemplateModel,
    record: Record,
    options: OutputOptions,
    row_index: int,
) -> bytes:
    document = open_docx(template.body, template.name)

    def replace(m: Match, literal: str) -> str:
        value = resolve(template, record, m.name, row_index)
        return value if value is not None else literal

    for paragraph in docx_paragraphs(document):
        runs = paragraph.runs
        if not runs:
            continue
        texts = [r.text for r in runs]
        substituted = _substitute_runs(texts, replace)
        if substituted is None:
            # a placeholder spans runs: keep the first run's formatting
            runs[0].text = substitute_str("".join(texts), template, record, row_index)
            for run in runs[1:]:
                run.text = ""
        else:
            for run, old, new in zip(runs, texts, substituted):
                if new != old:
                    run.text = new

    _apply_docx_options(document, template, options, row_index)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _docx_template_lines(template: TemplateModel, record: Record, row_index: int) -> list[str]:
    document = open_docx(template.body, template.name)
    return [
        substitute_str(p.text, template, record, row_index)
        for p in document.paragraphs
    ]


def _build_docx(
    lines: list[str],
    template: TemplateModel,
    options: OutputOptions,
    row_index: int,
) -> bytes:
    import docx

    document = docx.Document()
    for line in lines:
        document.add_paragraph(line)
    _apply_docx_options(document, template, options, row_index)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _apply_docx_options(document, template: TemplateModel, options: OutputOptions, row_index: int) -> None:
    if options.include_metadata:
        props = document.core_properties
        props.title = template.name
        props.subject = f"row {row_index}"
        props.created = utcnow()
    if options.watermark:
        for section in document.sections:
            section.header.is_linked_to_previous = False
            section.header.add_paragraph(options.watermark)


# === PDF ===


def _build_pdf(
    lines: list[str],
    template: TemplateModel,
    options: OutputOptions,
    row_index: int,
) -> bytes:
    import fitz  # PyMuPDF

    doc = fitz.open()
    try:
        width, height = fitz.paper_size("a4")
        per_page = max(1, int((height - 2 * _PAGE_MARGIN) // _LINE_HEIGHT))
        chunks = [lines[i:i + per_page] for i in range(0, len(lines), per_page)] or [[]]
        for chunk in chunks:
            page = doc.new_page(width=width, height=height)
            if chunk:
                page.insert_text(
                    (_PAGE_MARGIN, _PAGE_MARGIN),
                    "\n".join(chunk),
                    fontsize=_FONT_SIZE,
                    lineheight=_LINE_HEIGHT / _FONT_SIZE,
                )
            if options.watermark:
                page.insert_text(
                    (_PAGE_MARGIN, height / 2),
                    options.watermark,
                    fontsize=40,
                    color=_WATERMARK_COLOR,
                    overlay=True,
                )

        if options.include_metadata:
            doc.set_metadata({
                "title": template.name,
                "subject": f"row {row_index}",
                "creationDate": fitz.get_pdf_now(),
            })

        save_options = dict(_PDF_SAVE_OPTIONS[options.quality])
        if options.password:
            save_options.update(
                encryption=fitz.PDF_ENCRYPT_AES_256,
                owner_pw=options.password,
                user_pw=options.password,
            )
        return doc.tobytes(**save_options)
    finally:
        doc.close()
