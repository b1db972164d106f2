# src/storage/layout.py - v2
"""Per-batch working directory layout.

    <root>/<batch_id>/
        template.<ext>      uploaded template, removed after parsing
        records.<ext>       uploaded source, removed after parsing
        out/
            document_<padded_index>.<ext>
        archive.zip
        calls_log.jsonl
"""

from __future__ import annotations

from pathlib import Path

from bulkdoc.core.errors import WorkingDirectoryError

OUT_DIR = "out"
ARCHIVE_NAME = "archive.zip"
CALLS_LOG_NAME = "calls_log.jsonl"
TEMPLATE_STEM = "template"
RECORDS_STEM = "records"
DOCUMENT_PREFIX = "document_"


def batch_dir(root: Path, batch_id: str) -> Path:
    """Return the working directory of a batch."""
    return root / batch_id


def out_dir(batch_path: Path) -> Path:
    return batch_path / OUT_DIR


def archive_path(batch_path: Path) -> Path:
    return batch_path / ARCHIVE_NAME


def calls_log_path(batch_path: Path) -> Path:
    return batch_path / CALLS_LOG_NAME


def upload_path(batch_path: Path, stem: str, extension: str) -> Path:
    """Path of an uploaded input (``template.docx``, ``records.csv``)."""
    return batch_path / f"{stem}.{extension.lstrip('.')}"


def document_name(row_index: int, total: int, extension: str) -> str:
    """Entry name with the row index zero-padded to the width of ``total``.

    Lexicographic order of the names equals source order.
    """
    width = len(str(max(total, 1)))
    return f"{DOCUMENT_PREFIX}{row_index:0{width}d}.{extension.lstrip('.')}"


def document_path(batch_path: Path, row_index: int, total: int, extension: str) -> Path:
    return out_dir(batch_path) / document_name(row_index, total, extension)


def ensure_batch_directories(batch_path: Path) -> None:
    """Create the batch directory and its out/ subdirectory.

    Raises:
        WorkingDirectoryError: If the directories cannot be created.
    """
    try:
        out_dir(batch_path).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WorkingDirectoryError(
            f"Cannot create working directory {batch_path}: {exc}"
        ) from exc
