"""CLI entry point for running transfer jobs.

Usage:
    python -m transfers run ./jobs/orders.yaml
    python -m transfers run ./jobs/orders.yaml --workers 8 --json-logs
    python -m transfers list
    python -m transfers cat ./out/orders --limit 20

Exit codes:
    0  job finished (DONE)
    1  job failed (FAILED)
    2  configuration error
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from transfers.lib.codecs import list_codecs
from transfers.lib.config import TransferSettings
from transfers.lib.config_loader import load_job_config
from transfers.lib.coordinator import TaskResult, TransferJob
from transfers.lib.errors import ConfigurationError, TransferError
from transfers.lib.extractor import list_extractor_types
from transfers.lib.io import read_output
from transfers.lib.loaders import list_loader_types
from transfers.lib.logging import setup_logging
from transfers.lib.partitioner import list_partitioner_types

logger = logging.getLogger(__name__)

EXIT_DONE = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _report_task(result: TaskResult) -> None:
    if result.success:
        logger.info(
            "Partition %d %s: %d record(s) in %.2fs",
            result.partition,
            result.description,
            result.records,
            result.duration_seconds,
        )
    elif result.cancelled:
        logger.info("Partition %d %s: cancelled", result.partition, result.description)
    else:
        logger.error("Partition %d %s: FAILED - %s", result.partition, result.description, result.error)


def cmd_run(args: argparse.Namespace, settings: TransferSettings) -> int:
    try:
        config = load_job_config(args.config)
        workers = args.workers or settings.max_workers
        if workers:
            config = config.model_copy(update={"max_workers": workers})
        result = TransferJob(config, on_task_complete=_report_task).run()
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG
    except TransferError as e:
        logger.error("Job failed: %s", e)
        return EXIT_FAILED

    if result.success:
        print(
            f"DONE: {result.records} record(s) written to {len(result.output_files)} "
            f"file(s) in {config.output_dir}"
        )
        if result.failed_partitions:
            print(f"Skipped partitions: {', '.join(map(str, result.failed_partitions))}")
        return EXIT_DONE

    print(
        f"FAILED: partitions {', '.join(map(str, result.failed_partitions))} did not complete; "
        f"shards are under {config.output_dir}/_shards"
    )
    return EXIT_FAILED


def cmd_list(args: argparse.Namespace, settings: TransferSettings) -> int:
    print("Partitioners:")
    for name in list_partitioner_types():
        print(f"  {name}")
    print("Extractors:")
    for name in list_extractor_types():
        print(f"  {name}")
    print("Loaders:")
    for name in list_loader_types():
        print(f"  {name}")
    print("Compression codecs:")
    for name in list_codecs():
        print(f"  {name}")
    return EXIT_DONE


def cmd_cat(args: argparse.Namespace, settings: TransferSettings) -> int:
    try:
        for record in read_output(args.output_dir, limit=args.limit):
            print(record.to_text())
    except (TransferError, OSError) as e:
        logger.error("Cannot read %s: %s", args.output_dir, e)
        return EXIT_FAILED
    return EXIT_DONE


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transfer-foundry",
        description="Run partitioned bulk-data transfer jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run a job
    python -m transfers run ./jobs/orders.yaml

    # Run with more workers and JSON logs
    python -m transfers run ./jobs/orders.yaml --workers 8 --json-logs

    # Show registered strategies and codecs
    python -m transfers list

    # Print the first rows of a finished job
    python -m transfers cat ./out/orders --limit 20
        """,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    common.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    common.add_argument("--log-file", help="Write logs to a file in addition to console")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", parents=[common], help="Run a job from a YAML file")
    run_parser.add_argument("config", help="Path to the job YAML file")
    run_parser.add_argument("--workers", type=int, help="Override max_workers")
    run_parser.set_defaults(handler=cmd_run)

    list_parser = subparsers.add_parser("list", parents=[common], help="List registered strategies and codecs")
    list_parser.set_defaults(handler=cmd_list)

    cat_parser = subparsers.add_parser("cat", parents=[common], help="Print a finished job's records as text")
    cat_parser.add_argument("output_dir", help="Job output directory or URI")
    cat_parser.add_argument("--limit", type=int, help="Stop after N records")
    cat_parser.set_defaults(handler=cmd_cat)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = TransferSettings()
    setup_logging(
        verbose=args.verbose,
        json_format=args.json_logs or settings.log_format == "json",
        log_file=args.log_file or settings.log_file,
        level=settings.log_level,
    )
    return args.handler(args, settings)


if __name__ == "__main__":
    sys.exit(main())
