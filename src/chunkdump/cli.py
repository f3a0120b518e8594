from __future__ import annotations

import argparse
import logging
import sys

from .app_logging import log_with_fields, setup_logger
from .catalog import EmptyCatalogError, collect_catalog
from .config import AppConfig, ConfigError, load_config, validate_config
from .export import ExportCommandBuilder
from .manifest import Manifest, format_plan, read_progress
from .models import Blob
from .planner import plan_blobs
from .pool import StatusLine, WorkerPool
from .scheduler import schedule
from .tools import ExternalToolError, ToolRunner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chunkdump",
        description="Parallel chunked logical backup of a PostgreSQL database",
    )
    parser.add_argument("--config", required=True, help="Path to chunkdump YAML config")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show per-blob events on the console")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Plan the backup and export every blob")
    subparsers.add_parser("plan", help="Print the ordered blob plan without exporting")
    subparsers.add_parser("progress", help="Summarize planned vs finished blobs from the manifest")
    return parser


def _plan(config: AppConfig, runner: ToolRunner, logger: logging.Logger) -> list[Blob]:
    catalog = collect_catalog(runner, config.schema_dump_path, logger)
    return plan_blobs(catalog, config.max_size_kb, runner, logger)


def cmd_run(config: AppConfig, logger: logging.Logger) -> int:
    runner = ToolRunner(config.tools, config.database)
    blobs = _plan(config, runner, logger)
    with Manifest(config.manifest_path, truncate=True) as manifest:
        scheduled = schedule(blobs, manifest)
        log_with_fields(
            logger,
            logging.INFO,
            "plan_scheduled",
            blobs=len(scheduled),
            total_size_kb=sum(blob.size for blob in scheduled),
            manifest=str(config.manifest_path),
        )
        pool = WorkerPool(
            jobs=config.pool.jobs,
            command_builder=ExportCommandBuilder(runner, config.output_dir, config.compressor),
            manifest=manifest,
            logger=logger,
            status=StatusLine(),
            max_wait_seconds=config.pool.max_wait_seconds,
        )
        pool.run(scheduled)
    return 0


def cmd_plan(config: AppConfig, logger: logging.Logger) -> int:
    runner = ToolRunner(config.tools, config.database)
    scheduled = schedule(_plan(config, runner, logger))
    for line in format_plan(scheduled):
        print(line)
    return 0


def cmd_progress(config: AppConfig) -> int:
    if not config.manifest_path.exists():
        print(f"manifest not found: {config.manifest_path}", file=sys.stderr)
        return 2
    progress = read_progress(config.manifest_path)
    print(f"Blobs:   {len(progress.finished)}/{len(progress.planned)} finished")
    print(f"Size KB: {progress.finished_size}/{progress.planned_size} finished")
    pending = progress.pending_ids
    if pending:
        preview = ", ".join(str(blob_id) for blob_id in pending[:20])
        more = f" (+{len(pending) - 20} more)" if len(pending) > 20 else ""
        print(f"Pending: {preview}{more}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(args.config)
        if args.command == "progress":
            return cmd_progress(config)
        validate_config(config)
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2

    logger = setup_logger(config.log_path, logging.DEBUG if args.verbose else logging.INFO)
    try:
        if args.command == "run":
            return cmd_run(config, logger)
        if args.command == "plan":
            return cmd_plan(config, logger)
    except EmptyCatalogError as exc:
        log_with_fields(logger, logging.INFO, "nothing_to_do", reason=str(exc))
        return 0
    except ExternalToolError as exc:
        log_with_fields(logger, logging.ERROR, "run_failed", error=str(exc))
        return 1
    except KeyboardInterrupt:
        log_with_fields(logger, logging.INFO, "shutdown", reason="keyboard_interrupt")
        return 130
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
