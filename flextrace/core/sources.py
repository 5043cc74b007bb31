"""
Resolve which trace files a reader should load.

Two modes:
    single: an explicit file (argument, TRACE_FILE, ./trace.ndjson, ../trace.ndjson)
    multi:  the newest root-session files under <root>/<project> (or every project)

Files whose name starts with "_" (the capture bracket file) are never
discovered as root sessions.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

from .constants import (
    ALL_PROJECTS,
    DEFAULT_SOURCE_LIMIT,
    DEFAULT_TRACE_FILE_NAME,
    DEFAULT_TRACE_ROOT,
    TRACE_FILE_SUFFIX,
)
from .exceptions import TraceSourceError

logger = logging.getLogger(__name__)


@dataclass
class TraceSourceSelection:
    """The files chosen for one load."""
    mode: Literal["single", "multi"]
    limit: int
    sources: list[str] = field(default_factory=list)
    trace_path: Optional[str] = None
    root_dir: Optional[str] = None
    project_filter: Optional[str] = None


def _is_readable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


def resolve_trace_path(input_path: Optional[str] = None) -> Path:
    """
    Pick the first readable single trace file.

    Candidates: input_path, $TRACE_FILE, ./trace.ndjson, ../trace.ndjson.
    Relative paths resolve against the working directory.

    Raises:
        TraceSourceError: If none of the candidates is readable.
    """
    cwd = Path.cwd()
    candidates = [
        (input_path or "").strip(),
        os.environ.get("TRACE_FILE", "").strip(),
        str(cwd / DEFAULT_TRACE_FILE_NAME),
        str(cwd.parent / DEFAULT_TRACE_FILE_NAME),
    ]
    for candidate in candidates:
        if not candidate:
            continue
        path = Path(candidate).expanduser()
        if not path.is_absolute():
            path = cwd / path
        if _is_readable(path):
            return path.resolve()

    raise TraceSourceError(
        "No readable trace file found. Set TRACE_FILE or pass an explicit trace path."
    )


def _list_project_dirs(root_dir: Path, project_filter: str) -> list[Path]:
    if not root_dir.is_dir():
        return []
    if project_filter != ALL_PROJECTS:
        candidate = root_dir / project_filter
        return [candidate] if candidate.is_dir() else []
    return sorted(p for p in root_dir.iterdir() if p.is_dir())


def discover_root_files(
    root_dir: Path,
    project_filter: str = ALL_PROJECTS,
    limit: int = DEFAULT_SOURCE_LIMIT,
) -> list[Path]:
    """
    Newest-first root-session files under the trace root.

    Args:
        root_dir: Trace root directory.
        project_filter: Project directory name, or "all".
        limit: Maximum number of files returned.

    Returns:
        Paths sorted by modification time, newest first.
    """
    found: list[tuple[float, Path]] = []
    for project_dir in _list_project_dirs(root_dir, project_filter):
        try:
            entries = list(os.scandir(project_dir))
        except FileNotFoundError:
            continue
        for entry in entries:
            if not entry.name.endswith(TRACE_FILE_SUFFIX) or entry.name.startswith("_"):
                continue
            try:
                if not entry.is_file():
                    continue
                mtime = entry.stat().st_mtime
            except OSError:
                continue
            found.append((mtime, Path(entry.path)))

    found.sort(key=lambda item: item[0], reverse=True)
    return [path for _, path in found[:max(1, limit)]]


def resolve_trace_source(
    path: Optional[str] = None,
    root: Optional[str] = None,
    project: Optional[str] = None,
    limit: Optional[int] = None,
) -> TraceSourceSelection:
    """
    Resolve an explicit file or discover root-session files.

    Args:
        path: Explicit trace file; switches to single mode.
        root: Trace root; defaults to $FLEXTRACE_ROOT or ~/.flextrace.
        project: Project directory name or "all".
        limit: Maximum number of discovered files.

    Raises:
        TraceSourceError: If nothing readable is found.
    """
    limit = max(1, int(limit or DEFAULT_SOURCE_LIMIT))
    preferred = (path or "").strip()
    if preferred:
        trace_path = resolve_trace_path(preferred)
        return TraceSourceSelection(
            mode="single",
            limit=limit,
            trace_path=str(trace_path),
            sources=[str(trace_path)],
        )

    configured_root = (root or "").strip() or os.environ.get("FLEXTRACE_ROOT") or DEFAULT_TRACE_ROOT
    root_dir = Path(configured_root).expanduser().resolve()
    project_filter = (project or "").strip() or ALL_PROJECTS
    sources = discover_root_files(root_dir, project_filter, limit)
    if not sources:
        raise TraceSourceError(f"No trace root-session files found under {root_dir}.")

    logger.debug(f"Discovered {len(sources)} trace files under {root_dir} ({project_filter})")
    return TraceSourceSelection(
        mode="multi",
        limit=limit,
        root_dir=str(root_dir),
        project_filter=project_filter,
        sources=[str(p) for p in sources],
    )
