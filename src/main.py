# src/main.py — v2
"""CLI entry point: process, sync, watch commands.

Usage:
    notesync process <image>... [--batch] [--originator ID] [--dry-run]
    notesync sync [--root DIR] [--file PATH] [--dry-run]
    notesync watch [--root DIR] [--dry-run]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from notesync.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

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
        prog="notesync",
        description=f"notesync v{__version__}: handwritten notes to version-controlled Markdown",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Use in-memory stores instead of the configured services",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- process ---
    p_process = subparsers.add_parser(
        "process", help="Recognize images and publish them as a note",
    )
    p_process.add_argument("images", type=Path, nargs="+", help="Image files")
    p_process.add_argument(
        "--originator", default="cli",
        help="Originator id used for the session (default: cli)",
    )
    p_process.add_argument(
        "--batch", action="store_true",
        help="Publish one note per image instead of one note for all images",
    )
    p_process.add_argument(
        "--concurrency", type=int, default=None,
        help="Batch concurrency (default: BATCH_CONCURRENCY)",
    )
    p_process.set_defaults(func=_cmd_process)

    # --- sync ---
    p_sync = subparsers.add_parser(
        "sync", help="Run one reconciliation of the tracked folder",
    )
    p_sync.add_argument(
        "--root", default=None,
        help="Tracked folder (default: SYNC_ROOT)",
    )
    p_sync.add_argument(
        "--file", dest="path", default=None,
        help="Reconcile a single path relative to the root",
    )
    p_sync.set_defaults(func=_cmd_sync)

    # --- watch ---
    p_watch = subparsers.add_parser(
        "watch", help="Reconcile periodically until interrupted",
    )
    p_watch.add_argument(
        "--root", default=None,
        help="Tracked folder (default: SYNC_ROOT)",
    )
    p_watch.add_argument(
        "--interval", type=float, default=None,
        help="Seconds between runs (default: SYNC_INTERVAL_SECONDS)",
    )
    p_watch.set_defaults(func=_cmd_watch)

    return parser


async def _cmd_process(args: argparse.Namespace) -> int:
    """Send images through the pipeline."""
    from notesync.api.facade import build_runtime
    from notesync.core.models import Unit

    missing = [p for p in args.images if not p.is_file()]
    if missing:
        for path in missing:
            logger.error("File not found: %s", path)
        return 1

    runtime = build_runtime(_load_settings(args), dry_run=args.dry_run)
    try:
        if args.batch:
            units = [
                Unit(payload=p.read_bytes(), name=p.name, originator_id=args.originator)
                for p in args.images
            ]
            batch = await runtime.coordinator.process_batch(units, concurrency=args.concurrency)
            _print_json(batch.model_dump_json(indent=2))
            return 0 if batch.failed == 0 else 2

        for path in args.images:
            await runtime.intake.receive(args.originator, path.read_bytes(), path.name)
        result = await runtime.intake.end(args.originator)
        if result is None:
            logger.error("Nothing to publish")
            return 1
        _print_json(result.model_dump_json(indent=2))
        return 0 if result.success else 2
    finally:
        await runtime.aclose()


async def _cmd_sync(args: argparse.Namespace) -> int:
    """Run one manual reconciliation."""
    from notesync.api.facade import build_runtime

    runtime = build_runtime(_load_settings(args, sync_auto=False), dry_run=args.dry_run)
    try:
        if runtime.reconciler is None:
            logger.error("No tracked folder: set SYNC_ROOT or pass --root")
            return 1
        if args.path:
            result = await runtime.reconciler.sync_file(args.path)
        else:
            result = await runtime.reconciler.manual_sync()
        _print_json(result.model_dump_json(indent=2))
        return 0 if result.success else 2
    finally:
        await runtime.aclose()


async def _cmd_watch(args: argparse.Namespace) -> int:
    """Run an initial reconciliation, then keep the timer armed until interrupted."""
    from notesync.api.facade import build_runtime

    overrides: dict = {"sync_auto": True}
    if args.interval is not None:
        overrides["sync_interval_seconds"] = args.interval
    runtime = build_runtime(_load_settings(args, **overrides), dry_run=args.dry_run)
    try:
        if runtime.reconciler is None:
            logger.error("No tracked folder: set SYNC_ROOT or pass --root")
            return 1
        first = await runtime.reconciler.manual_sync()
        logger.info("Initial sync: %s", first.message)
        runtime.reconciler.start()
        await asyncio.Event().wait()
        return 0
    finally:
        await runtime.aclose()


def _load_settings(args: argparse.Namespace, **overrides: object):
    """Load settings, apply CLI overrides and configure logging."""
    from notesync.config.settings import load_settings
    from notesync.logging.logger import setup_logging

    if getattr(args, "root", None):
        overrides["sync_root"] = args.root
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    settings = load_settings(**overrides)

    setup_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return settings


def _print_json(payload: str) -> None:
    sys.stdout.write(payload + "\n")


if __name__ == "__main__":
    sys.exit(main())
