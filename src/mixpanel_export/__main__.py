"""Run a Mixpanel raw event export from the command line. Use --help for usage."""

import argparse
import asyncio
import logging
import sys
from contextlib import ExitStack
from datetime import date, timedelta
from pathlib import Path

from dotenv import load_dotenv

from config import load_config
from core.errors.exceptions import ConfigurationError, ExportError
from core.logging.setup import setup_logging
from core.logging.utilities import log_exception
from mixpanel_export.client import MixpanelExportClient
from mixpanel_export.router import ExportStats
from mixpanel_export.sinks import StreamSink

# __main__.py is at src/mixpanel_export/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

EXIT_OK = 0
EXIT_EXPORT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m mixpanel_export",
        description="Export raw Mixpanel events as NDJSON, tagged with product and event",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Export yesterday to stdout
    python -m mixpanel_export

    # Export one day to a file
    python -m mixpanel_export --date 2024-01-01 --output events.ndjson

    # Export a range, only signup and purchase events
    python -m mixpanel_export --start 2024-01-01 --end 2024-01-07 \\
        --param 'event=["signup","purchase"]'
        """,
    )

    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Day to export, YYYY-MM-DD (default: yesterday)",
    )
    parser.add_argument("--start", type=date.fromisoformat, default=None, help="First day of a range")
    parser.add_argument("--end", type=date.fromisoformat, default=None, help="Last day of a range")
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Write records to this file instead of stdout",
    )
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra export query parameter (repeatable)",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write JSON logs here")

    args = parser.parse_args(argv)

    if args.date is not None and (args.start is not None or args.end is not None):
        parser.error("--date cannot be combined with --start/--end")
    if (args.start is None) != (args.end is None):
        parser.error("--start and --end must be given together")
    if args.start is not None and args.end < args.start:
        parser.error("--end must not be before --start")
    try:
        args.extra_params = parse_params(args.param)
    except ValueError as e:
        parser.error(str(e))
    return args


def parse_params(pairs: list[str]) -> dict[str, list[str]]:
    """Turn repeated KEY=VALUE options into a multi-valued mapping."""
    params: dict[str, list[str]] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"--param expects KEY=VALUE, got {pair!r}")
        params.setdefault(key, []).append(value)
    return params


def resolve_dates(args: argparse.Namespace, today: date | None = None) -> tuple[date, date]:
    if args.start is not None:
        return args.start, args.end
    if args.date is not None:
        return args.date, args.date
    yesterday = (today or date.today()) - timedelta(days=1)
    return yesterday, yesterday


async def run_export(
    client: MixpanelExportClient,
    start: date,
    end: date,
    output: Path | None,
    extra_params: dict[str, list[str]] | None = None,
) -> ExportStats:
    with ExitStack() as stack:
        if output is None:
            stream = sys.stdout.buffer
        else:
            output.parent.mkdir(parents=True, exist_ok=True)
            stream = stack.enter_context(open(output, "wb"))
        sink = StreamSink(stream)
        async with client:
            return await client.export_range(start, end, sink, extra_params or None)


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    setup_logging(
        level=getattr(logging, args.log_level),
        json_format=args.json_logs,
        log_file=args.log_file,
    )

    try:
        config = load_config(config_path=args.config)
        client = MixpanelExportClient.from_config(config)
    except ConfigurationError as e:
        log_exception(logger, e, "Invalid configuration", include_traceback=False)
        return EXIT_CONFIG_ERROR

    start, end = resolve_dates(args)
    try:
        stats = asyncio.run(run_export(client, start, end, args.output, args.extra_params))
    except ExportError as e:
        log_exception(
            logger,
            e,
            "Export failed",
            include_traceback=False,
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            retryable=e.is_retryable,
        )
        return EXIT_EXPORT_ERROR
    except KeyboardInterrupt:
        logger.warning("Export interrupted")
        return EXIT_INTERRUPTED

    logger.info(
        f"Export finished: {stats.summary()}",
        extra={"start_date": start.isoformat(), "end_date": end.isoformat()},
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
