"""
Shared CLI argument parsing utilities for tracectl.

Provides the argument groups reused by several subcommands.

Usage:
    from .cli_common import add_source_arguments, add_logging_arguments

    parser = argparse.ArgumentParser()
    add_source_arguments(parser)
    add_logging_arguments(parser)
"""
import argparse

from .constants import DEFAULT_SOURCE_LIMIT
from .exporter import ExportFormat


# =============================================================================
# Argument Group Builders
# =============================================================================

def add_trace_file_argument(parser: argparse.ArgumentParser, required: bool = True) -> None:
    """
    Add the positional trace file argument.

    Args:
        parser: ArgumentParser to add arguments to.
        required: When False the argument may be omitted (root discovery is used).
    """
    parser.add_argument(
        "trace",
        nargs=None if required else "?",
        default=None,
        help="Path to an NDJSON trace file" + ("" if required else " (default: discover under --root)")
    )


def add_source_arguments(parser: argparse.ArgumentParser) -> None:
    """
    Add root-session discovery arguments to parser.

    Args:
        parser: ArgumentParser to add arguments to.
    """
    parser.add_argument(
        "--root",
        type=str,
        default=None,
        help="Trace root directory (default: $FLEXTRACE_ROOT or ~/.flextrace)"
    )
    parser.add_argument(
        "--project", "-p",
        type=str,
        default=None,
        help="Project directory under the root, or 'all' (default: all)"
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help=f"Maximum number of root-session files to load (default: {DEFAULT_SOURCE_LIMIT})"
    )


def add_server_arguments(parser: argparse.ArgumentParser) -> None:
    """
    Add viewer server arguments to parser.

    Args:
        parser: ArgumentParser to add arguments to.
    """
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind (overrides flextrace.yaml)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (overrides flextrace.yaml)"
    )


def add_export_arguments(parser: argparse.ArgumentParser) -> None:
    """
    Add export output arguments to parser.

    Args:
        parser: ArgumentParser to add arguments to.
    """
    parser.add_argument(
        "--out", "-o",
        type=str,
        required=True,
        help="Output file"
    )
    parser.add_argument(
        "--format",
        type=str,
        default=ExportFormat.JSON.value,
        help="Export format: json, csv or chrome-trace (default: json)"
    )


def add_config_arguments(parser: argparse.ArgumentParser) -> None:
    """
    Add configuration file argument to parser.

    Args:
        parser: ArgumentParser to add arguments to.
    """
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to flextrace.yaml (default: config/flextrace.yaml)"
    )


def add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    """
    Add logging configuration arguments to parser.

    Args:
        parser: ArgumentParser to add arguments to.
    """
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )
