"""
tracectl: command-line helper for FlexTrace traces.

Commands:
    analyze  Summarize a trace file (totals, p95, slow tasks, agent activity)
    export   Convert a trace file to JSON, CSV or Chrome trace-event JSON
    serve    Run the read-only viewer API
    watch    Poll the trace and print the live timeline

Usage:
    tracectl analyze trace.ndjson --summary summary.json
    tracectl export trace.ndjson --out trace.json --format chrome-trace
    tracectl serve --root ~/.flextrace --project myrepo --port 7399
    tracectl watch --poll-interval 1
"""
import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv

from ..config import ENV_FILE, ConfigNotFoundError, ConfigValidationError, TraceConfigLoader, ViewerConfig
from .analyzer import analyze_trace, save_summary
from .cli_common import (
    add_config_arguments,
    add_export_arguments,
    add_logging_arguments,
    add_server_arguments,
    add_source_arguments,
    add_trace_file_argument,
)
from .exceptions import FlexTraceError
from .exporter import export_trace, parse_export_format
from .loader import load_trace
from .logging_config import setup_cli_logging
from .output import print_status, print_summary, print_timeline_frame

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the tracectl argument parser."""
    parser = argparse.ArgumentParser(
        prog="tracectl",
        description="FlexTrace helper - analyze, export and view agent traces",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s analyze trace.ndjson --summary summary.json
  %(prog)s export trace.ndjson --out trace.csv --format csv
  %(prog)s serve --root ~/.flextrace --project myrepo
  %(prog)s watch trace.ndjson --poll-interval 1
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Summarize a trace file")
    add_trace_file_argument(analyze)
    analyze.add_argument(
        "--summary",
        type=str,
        default=None,
        help="Also write the summary as JSON to this file"
    )
    analyze.add_argument(
        "--json",
        action="store_true",
        help="Print the summary as JSON instead of tables"
    )
    add_logging_arguments(analyze)

    export = subparsers.add_parser("export", help="Export a trace file")
    add_trace_file_argument(export)
    add_export_arguments(export)
    add_logging_arguments(export)

    serve = subparsers.add_parser("serve", help="Run the viewer API")
    add_trace_file_argument(serve, required=False)
    add_source_arguments(serve)
    add_server_arguments(serve)
    add_config_arguments(serve)
    add_logging_arguments(serve)

    watch = subparsers.add_parser("watch", help="Print the live timeline periodically")
    add_trace_file_argument(watch, required=False)
    add_source_arguments(watch)
    add_config_arguments(watch)
    watch.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between polls (overrides flextrace.yaml)"
    )
    watch.add_argument(
        "--once",
        action="store_true",
        help="Print a single frame and exit"
    )
    add_logging_arguments(watch)

    return parser


def load_viewer_config(args: argparse.Namespace) -> ViewerConfig:
    """
    Viewer configuration with CLI overrides applied.

    Raises:
        ConfigNotFoundError: If --config points to a missing file.
        ConfigValidationError: If the configuration is invalid.
    """
    loader = TraceConfigLoader(Path(args.config) if args.config else None)
    loader.apply_cli_overrides(
        trace_path=args.trace,
        root_dir=args.root,
        project=args.project,
        limit=args.limit,
        host=getattr(args, "host", None),
        port=getattr(args, "port", None),
        poll_interval=getattr(args, "poll_interval", None),
    )
    return loader.get_viewer_config()


# =============================================================================
# Commands
# =============================================================================

def cmd_analyze(args: argparse.Namespace) -> int:
    result = load_trace(args.trace)
    summary = analyze_trace(result.records)
    if args.summary:
        save_summary(summary, Path(args.summary))
    if args.json:
        print(json.dumps(summary.model_dump(mode="json", by_alias=True), indent=2))
    else:
        print_summary(summary)
        if result.malformed_lines:
            print_status(f"\n{result.malformed_lines} malformed lines skipped", "warning")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    fmt = parse_export_format(args.format)
    records = load_trace(args.trace).records
    out = export_trace(Path(args.out), records, fmt)
    print(f"exported {len(records)} records to {out} ({fmt})")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    from ..api.main import run_server

    config = load_viewer_config(args)
    run_server(config, log_level=args.log_level)
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    """Poll and print frames; a failed poll is reported and retried next tick."""
    from ..services.timeline_service import TimelineService

    config = load_viewer_config(args)
    service = TimelineService(config)
    while True:
        try:
            snapshot = service.get_timeline()
        except FlexTraceError as e:
            logger.warning(f"Watch poll failed: {e}")
            print_status(f"Poll failed: {e}", "warning")
            if args.once:
                return 1
        else:
            print_timeline_frame(snapshot, clear=not args.once)
            if args.once:
                return 0
        time.sleep(config.poll_interval)


COMMANDS = {
    "analyze": cmd_analyze,
    "export": cmd_export,
    "serve": cmd_serve,
    "watch": cmd_watch,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code.
    """
    load_dotenv(ENV_FILE)
    args = build_parser().parse_args(argv)

    if args.command != "serve":
        setup_cli_logging(args.log_level)

    try:
        return COMMANDS[args.command](args)
    except (ConfigNotFoundError, ConfigValidationError) as e:
        print("\n\033[91m✗ Configuration Error\033[0m\n", file=sys.stderr)
        print(f"{e}\n", file=sys.stderr)
        return 1
    except FlexTraceError as e:
        logger.error(f"tracectl {args.command} failed: {e}")
        print(f"tracectl failed: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
