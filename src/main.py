# src/main.py - v2
"""CLI entry point: generate, inspect-template, inspect-records, sweep commands.

Usage:
    bulkdoc generate <template> <records> [options]
    bulkdoc inspect-template <file>
    bulkdoc inspect-records <file>
    bulkdoc sweep [--dry-run]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from bulkdoc.version import __version__

if TYPE_CHECKING:
    from bulkdoc.config.settings import Settings

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    from bulkdoc.config.settings import ConfigurationError, load_settings

    try:
        args.settings = load_settings()
    except (ConfigurationError, ValueError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1
    _setup_logging(args.settings, args.verbose)

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bulkdoc",
        description=f"bulkdoc v{__version__} - bulk document generation from templates",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- generate ---
    p_gen = subparsers.add_parser(
        "generate", help="Render one document per record and archive them",
    )
    p_gen.add_argument("template", type=Path, help="Template file (.txt, .html, .md, .docx, .pdf)")
    p_gen.add_argument("records", type=Path, help="Delimited record source (.csv, .tsv, .txt)")
    p_gen.add_argument(
        "-o", "--output", type=Path, default=Path("./output"),
        help="Directory receiving the archive (default: ./output)",
    )
    p_gen.add_argument("--format", choices=["pdf", "docx", "txt"], default="pdf")
    p_gen.add_argument("--quality", choices=["low", "medium", "high"], default="medium")
    p_gen.add_argument("--watermark", default=None, help="Watermark text")
    p_gen.add_argument("--password", default=None, help="PDF open password")
    p_gen.add_argument(
        "--include-metadata", action="store_true",
        help="Embed generation metadata in each document",
    )
    p_gen.add_argument("--batch-size", type=int, default=None, help="Worker pool width")
    p_gen.add_argument("--retries", type=int, default=None, help="Retry attempts per record")
    p_gen.add_argument("--email", default=None, help="Notify this address on completion")
    p_gen.set_defaults(func=_cmd_generate)

    # --- inspect-template ---
    p_tpl = subparsers.add_parser(
        "inspect-template", help="List the placeholders of a template",
    )
    p_tpl.add_argument("file", type=Path, help="Template file")
    p_tpl.set_defaults(func=_cmd_inspect_template)

    # --- inspect-records ---
    p_rec = subparsers.add_parser(
        "inspect-records", help="Show what the parser detects in a record source",
    )
    p_rec.add_argument("file", type=Path, help="Record source file")
    p_rec.set_defaults(func=_cmd_inspect_records)

    # --- sweep ---
    p_sweep = subparsers.add_parser(
        "sweep", help="Reap orphaned working files older than FILE_RETENTION_HOURS",
    )
    p_sweep.add_argument(
        "--dry-run", action="store_true",
        help="Report what would be deleted without deleting",
    )
    p_sweep.set_defaults(func=_cmd_sweep)

    return parser


async def _cmd_generate(args: argparse.Namespace) -> int:
    """Run one batch to completion and copy its archive to the output directory."""
    from bulkdoc.api.facade import BulkDocService
    from bulkdoc.api.models import UploadedFile
    from bulkdoc.notify.models import NotificationTarget

    for path in (args.template, args.records):
        if not path.is_file():
            logger.error("File not found: %s", path)
            return 1

    options: dict[str, object] = {
        "format": args.format,
        "quality": args.quality,
        "include_metadata": args.include_metadata,
        "watermark": args.watermark,
        "password": args.password,
        "batch_size": args.batch_size,
        "retry_attempts": args.retries,
    }
    target = NotificationTarget(email=args.email) if args.email else None

    async with BulkDocService(args.settings) as service:
        receipt = await service.submit(
            UploadedFile(content=args.template.read_bytes(), filename=args.template.name),
            UploadedFile(content=args.records.read_bytes(), filename=args.records.name),
            options,
            target=target,
        )
        logger.info(
            "Batch %s: %d records, estimated %.0fs",
            receipt.batch_id, receipt.total_records, receipt.estimated_seconds or 0,
        )
        snapshot = await service.wait(receipt.batch_id)

        archive = None
        if snapshot.status == "completed":
            args.output.mkdir(parents=True, exist_ok=True)
            archive = args.output / f"{receipt.batch_id}.zip"
            with archive.open("wb") as f:
                async for chunk in service.download(receipt.batch_id):
                    f.write(chunk)

    print(f"\nBatch {snapshot.status}:")
    print(f"  Batch ID:   {snapshot.id}")
    print(f"  Records:    {snapshot.totals.total}")
    print(f"  Completed:  {snapshot.totals.completed}")
    print(f"  Failed:     {snapshot.totals.failed}")
    if archive is not None:
        print(f"  Archive:    {archive}")
    for result in snapshot.results:
        if result.status == "failed":
            print(f"  Row {result.row_index}: {result.error}")
    for error in snapshot.errors:
        print(f"  Error: {error}")
    return 0 if snapshot.status == "completed" else 2


async def _cmd_inspect_template(args: argparse.Namespace) -> int:
    """Print the placeholder inventory of a template."""
    from bulkdoc.template.parser import media_type_for, parse_template

    path: Path = args.file
    if not path.is_file():
        logger.error("File not found: %s", path)
        return 1

    template = parse_template(path.read_bytes(), media_type_for(path), name=path.name)
    print(f"\nTemplate {template.name} ({template.kind}):")
    print(f"  Placeholders: {len(template.placeholders)}")
    for info in template.inventory:
        kinds = ", ".join(info.kinds)
        print(f"  {info.name:<30} x{info.occurrences:<3} {info.value_kind:<9} [{kinds}]")
    return 0


async def _cmd_inspect_records(args: argparse.Namespace) -> int:
    """Print detected encoding, delimiter, headers and row count of a source."""
    from bulkdoc.records.parser import parse_records

    path: Path = args.file
    if not path.is_file():
        logger.error("File not found: %s", path)
        return 1

    settings = args.settings
    headers, _, metadata = parse_records(
        path.read_bytes(),
        max_bytes=settings.max_source_bytes,
        max_rows=settings.max_source_rows,
    )
    print(f"\nRecords {path.name}:")
    print(f"  Encoding:   {metadata.encoding}")
    print(f"  Delimiter:  {metadata.delimiter!r}")
    print(f"  Rows:       {metadata.total_rows}")
    print(f"  Columns:    {', '.join(headers)}")
    if metadata.empty_columns:
        print(f"  Empty:      {', '.join(metadata.empty_columns)}")
    for warning in metadata.warnings:
        print(f"  Warning:    {warning}")
    return 0


async def _cmd_sweep(args: argparse.Namespace) -> int:
    """Reap working-root entries that belong to no live batch."""
    from bulkdoc.engine.scheduler import BatchEngine
    from bulkdoc.retention.sweeper import RetentionSweeper

    settings = args.settings
    engine = BatchEngine(settings)
    try:
        report = await RetentionSweeper(engine, settings).sweep(dry_run=args.dry_run)
    finally:
        await engine.close()

    label = "would delete" if args.dry_run else "deleted"
    print(f"\nSweep {label} {len(report.files_deleted)} entries ({report.bytes_freed} bytes)")
    for name in report.files_deleted:
        print(f"  {name}")
    for error in report.errors:
        print(f"  Error: {error}")
    return 0 if not report.errors else 1


def _setup_logging(settings: Settings, verbose: bool) -> None:
    """Configure logging for CLI usage from the LOG_* settings."""
    from bulkdoc.logging.logger import setup_logging_from_settings

    setup_logging_from_settings(settings, level="DEBUG" if verbose else None)
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


if __name__ == "__main__":
    sys.exit(main())
