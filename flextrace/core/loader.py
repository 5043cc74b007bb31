"""
Read NDJSON trace files back into validated records.

Blank lines are ignored. A line that is not JSON, not an object, or not a
valid record is counted in malformed_lines and skipped; loading never raises
for bad content.

Usage:
    result = load_trace_files([Path("trace.ndjson")])
    timeline = build_timeline(result.records)
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Union

from pydantic import ValidationError

from .exceptions import TraceSourceError
from .schemas import TraceRecordBase, parse_record

logger = logging.getLogger(__name__)


@dataclass
class TraceLoadResult:
    """Records from one or more files, in file then line order."""
    records: list[TraceRecordBase] = field(default_factory=list)
    malformed_lines: int = 0
    sources: list[str] = field(default_factory=list)


def parse_record_line(line: str) -> Optional[TraceRecordBase]:
    """
    Parse one NDJSON line.

    Returns:
        The record, or None if the line is malformed.
    """
    try:
        return parse_record(line)
    except ValidationError:
        return None


def parse_lines(lines: Iterable[str], result: TraceLoadResult) -> None:
    """Append the valid records of `lines` to result, counting malformed ones."""
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        record = parse_record_line(line)
        if record is None:
            result.malformed_lines += 1
            continue
        result.records.append(record)


def load_trace_files(paths: Iterable[Union[str, Path]], skip_missing: bool = False) -> TraceLoadResult:
    """
    Load and merge several trace files.

    Args:
        paths: Files to read, in the order their records should appear.
        skip_missing: Ignore files that vanished since discovery (retention
            may delete them between polls) instead of failing.

    Returns:
        TraceLoadResult with records, malformed line count and loaded sources.

    Raises:
        TraceSourceError: If a file cannot be read and skip_missing is False.
    """
    result = TraceLoadResult()
    for path in paths:
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8", errors="replace") as f:
                parse_lines(f, result)
        except FileNotFoundError as e:
            if skip_missing:
                logger.warning(f"Trace file disappeared before load: {path}")
                continue
            raise TraceSourceError(f"Trace file not found: {path}") from e
        except OSError as e:
            raise TraceSourceError(f"Cannot read trace file {path}: {e}") from e
        result.sources.append(str(path))

    if result.malformed_lines:
        logger.debug(f"Skipped {result.malformed_lines} malformed lines")
    return result


def load_trace(path: Union[str, Path]) -> TraceLoadResult:
    return load_trace_files([path])
