"""CLI entry point for sql2csv.

Usage:
    sql2csv --query="select * from city" --output=city.csv
    sql2csv --input=query.sql --output=city.csv --server=db --database=geo
    sql2csv --check --server=db --database=geo
    sql2csv --help
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sql2csv import __version__
from sql2csv.core.config import DEFAULT_SERVER, ExportConfig
from sql2csv.core.errors import ConfigurationError
from sql2csv.core.logging_config import DEFAULT_LEVEL, configure_logging
from sql2csv.pipeline import (
    ExportOptions,
    ExportOrchestrator,
    check_connection,
    format_failure,
    format_summary,
)
from sql2csv.pipeline.orchestrator import DEFAULT_QUEUE_SIZE

USAGE = f"""
SQL2CSV Version: {__version__}

Required arguments:

  --query="select * from city" - required if there is no input argument
  --input=query.sql - required if there is no query argument
  --output=city.csv

Optional arguments:

  --server={DEFAULT_SERVER}
  --port=5432
  --database=postgres
  --username=postgres - omit with --password for integrated authentication
  --password=password
  --database-url=postgresql://user@host/db - overrides the connection fields
  --workers=N - transform workers (default: min(cpus / 2, 4))
  --unordered - write rows as they are encoded instead of in query order
  --atomic - write to a temporary file and rename it when complete
  --no-progress - never show the progress line
  --check - only test the database connection

Usage examples:

sql2csv --query="select * from city" --output=city.csv
"""


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="sql2csv",
        description="Export the result of a PostgreSQL query to a quoted CSV file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=USAGE,
    )

    parser.add_argument("--query", type=str, default=None, help="Query text")
    parser.add_argument(
        "--input",
        type=Path,
        default=None,
        help="File containing the query text (used when --query is absent)",
    )
    parser.add_argument("--output", type=Path, default=None, help="Destination CSV file")

    # Connection arguments
    parser.add_argument("--server", type=str, default=None, help="Database host")
    parser.add_argument("--port", type=int, default=None, help="Database port")
    parser.add_argument("--database", type=str, default=None, help="Database name")
    parser.add_argument("--username", type=str, default=None, help="Login name")
    parser.add_argument("--password", type=str, default=None, help="Login password")
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="libpq URL or DSN; overrides the individual connection options",
    )

    # Pipeline arguments
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of transform workers (default: min(cpus / 2, 4))",
    )
    parser.add_argument(
        "--unordered",
        action="store_true",
        help="Write rows in completion order instead of query order",
    )
    parser.add_argument(
        "--queue-size",
        type=int,
        default=DEFAULT_QUEUE_SIZE,
        help=f"Rows buffered between stages, 0 for unbounded (default: {DEFAULT_QUEUE_SIZE})",
    )
    parser.add_argument(
        "--atomic",
        action="store_true",
        help="Write to a temporary file and rename it on success",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Do not show the progress line",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Test the database connection and exit",
    )

    # Common arguments
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=DEFAULT_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help=f"Log level for diagnostics on stderr (default: {DEFAULT_LEVEL})",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def get_env_file(args: argparse.Namespace) -> Path | None:
    """Get the .env file path from args or the working directory."""
    env_file = args.env_file if args.env_file is not None else Path(".env")
    return env_file if env_file.exists() else None


def build_config(args: argparse.Namespace) -> ExportConfig:
    """Merge environment configuration with command line overrides."""
    config = ExportConfig.from_env(get_env_file(args))
    return config.with_overrides(
        query=args.query,
        input_path=args.input,
        output=args.output,
        server=args.server,
        port=args.port,
        database=args.database,
        username=args.username,
        password=args.password,
        database_url=args.database_url,
    )


def print_usage() -> None:
    """Print the usage text to stdout."""
    print(USAGE)


def run_check(config: ExportConfig) -> None:
    """Test the database connection and exit."""
    if check_connection(config):
        print(f"Connection OK: {config.redacted_dsn}")
        sys.exit(0)
    print(f"Cannot connect: {config.redacted_dsn}", file=sys.stderr)
    sys.exit(1)


def run_export(args: argparse.Namespace, config: ExportConfig) -> None:
    """Run the export and exit with its status."""
    options = ExportOptions(
        workers=args.workers,
        ordered=not args.unordered,
        queue_size=args.queue_size,
        atomic=args.atomic,
        progress=False if args.no_progress else None,
    )

    orchestrator = ExportOrchestrator(config, options)
    errors = orchestrator.validate()

    if errors:
        print(f"Configuration error: missing {', '.join(errors)}", file=sys.stderr)
        print_usage()
        sys.exit(1)

    try:
        result = orchestrator.run()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print_usage()
        sys.exit(1)

    if result.success:
        print()
        print(format_summary(result))
        sys.exit(0)

    print(format_failure(result), file=sys.stderr)
    sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the export."""
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.check:
        run_check(config)
        return

    run_export(args, config)


if __name__ == "__main__":
    main()
