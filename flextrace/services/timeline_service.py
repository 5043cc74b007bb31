"""
Timeline service for the FlexTrace viewer.

Resolves trace sources, loads them, and assembles the payloads served by the
viewer API and printed by `tracectl watch`: raw records, the reconstructed
timeline with lanes and handoffs, freshness (lag/stale) and per-source
status. Every call re-reads the files; nothing is cached between polls.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..config import ViewerConfig
from ..core.constants import ALL_PROJECTS, SOURCE_ACTIVE_WINDOW_MS
from ..core.handoff import infer_handoffs
from ..core.lanes import build_lane_model
from ..core.loader import TraceLoadResult, load_trace_files
from ..core.schemas import (
    CaptureSettings,
    CaptureStartRecord,
    SourceInfo,
    TimelineSnapshot,
    TraceRecordBase,
)
from ..core.sources import TraceSourceSelection, resolve_trace_source
from ..core.timeline import build_timeline
from ..core.trace_utils import now_ms

logger = logging.getLogger(__name__)


def parse_exclude(values: Optional[Iterable[str]]) -> set[str]:
    """Flatten repeated, comma-separated exclude parameters into a set of paths."""
    excluded: set[str] = set()
    for value in values or ():
        for item in value.split(","):
            item = item.strip()
            if item:
                excluded.add(item)
    return excluded


def describe_trace_path(selection: TraceSourceSelection, loaded_count: int) -> str:
    if selection.mode == "single" and selection.trace_path:
        return selection.trace_path
    return f"{selection.root_dir} ({loaded_count} root sessions)"


def capture_settings(records: Iterable[TraceRecordBase], fallback_root: Optional[str]) -> CaptureSettings:
    """Settings echoed from the newest capture_start record."""
    latest: Optional[CaptureStartRecord] = None
    for record in records:
        if isinstance(record, CaptureStartRecord):
            latest = record
    attrs: dict[str, Any] = (latest.attrs if latest else None) or {}

    def typed(key: str, kind: type) -> Any:
        value = attrs.get(key)
        if kind is int and isinstance(value, bool):
            return None
        return value if isinstance(value, kind) else None

    return CaptureSettings(
        root_dir=typed("rootDir", str) or fallback_root,
        max_project_bytes=typed("maxProjectBytes", int),
        capture_user_messages=typed("captureUserMessages", bool),
        user_message_preview_max=typed("userMessagePreviewMax", int),
    )


def source_infos(
    discovered: Iterable[str],
    excluded: set[str],
    generated_at: float,
) -> list[SourceInfo]:
    """
    Freshness of each discovered file.

    A source is active when it is loaded and was modified within the last hour.
    """
    infos: list[SourceInfo] = []
    for source in discovered:
        try:
            mtime_ms = os.stat(source).st_mtime * 1000
        except OSError:
            mtime_ms = 0
        age_ms = max(0, generated_at - mtime_ms) if mtime_ms > 0 else None
        is_excluded = source in excluded
        loaded = not is_excluded
        active = loaded and age_ms is not None and age_ms <= SOURCE_ACTIVE_WINDOW_MS
        infos.append(
            SourceInfo(
                path=source,
                loaded=loaded,
                excluded=is_excluded,
                mtime_ms=mtime_ms,
                age_ms=age_ms,
                status="active" if active else "idle",
            )
        )
    return infos


def load_selection(selection: TraceSourceSelection, excluded: set[str]) -> TraceLoadResult:
    """Load the selected files minus the excluded ones."""
    active = [source for source in selection.sources if source not in excluded]
    # Discovered files may be removed by retention between discovery and load
    return load_trace_files(active, skip_missing=selection.mode == "multi")


def build_timeline_snapshot(
    selection: TraceSourceSelection,
    excluded: Optional[set[str]] = None,
    stale_ms: float = 0,
    focus_root: str = ALL_PROJECTS,
    now_ts: Optional[float] = None,
) -> TimelineSnapshot:
    """
    Load the selection and assemble everything the viewer shows for one poll.

    Args:
        selection: Resolved trace sources.
        excluded: Source paths to skip.
        stale_ms: Lag at or above which the trace counts as stale.
        focus_root: Root session for the lane rows, or "all".
        now_ts: Epoch ms used as "now"; defaults to wall clock.

    Returns:
        TimelineSnapshot.
    """
    excluded = excluded or set()
    loaded = load_selection(selection, excluded)
    generated_at = now_ms() if now_ts is None else now_ts
    timeline = build_timeline(loaded.records, now_ts=generated_at)
    lanes = build_lane_model(timeline, focus_root)
    lag_ms = max(0, generated_at - timeline.latest_ts)

    return TimelineSnapshot(
        **dict(timeline),
        trace_path=describe_trace_path(selection, len(loaded.sources)),
        trace_mode=selection.mode,
        trace_root=selection.root_dir,
        project_filter=selection.project_filter,
        loaded_sessions=len(loaded.sources),
        discovered_sessions=len(selection.sources),
        source_files=loaded.sources,
        discovered_source_files=selection.sources,
        source_infos=source_infos(selection.sources, excluded, generated_at),
        settings=capture_settings(loaded.records, selection.root_dir),
        excluded_source_files=sorted(excluded),
        generated_at=generated_at,
        total_records=len(loaded.records),
        malformed_lines=loaded.malformed_lines,
        lag_ms=lag_ms,
        stale_threshold_ms=stale_ms,
        is_stale=lag_ms >= stale_ms,
        lanes=lanes,
        handoffs=infer_handoffs(lanes.rows, timeline.sessions),
    )


@dataclass
class TraceRequest:
    """Per-request source overrides; unset fields fall back to the viewer config."""
    path: Optional[str] = None
    root: Optional[str] = None
    project: Optional[str] = None
    limit: Optional[int] = None
    exclude: list[str] = field(default_factory=list)


class TimelineService:
    """
    Read-side operations backing the viewer API and `tracectl watch`.

    Args:
        config: Viewer configuration supplying default source, limit and stale threshold.
    """

    def __init__(self, config: ViewerConfig) -> None:
        self.config = config

    def resolve(self, request: Optional[TraceRequest] = None) -> TraceSourceSelection:
        """
        Resolve sources for a request.

        Raises:
            TraceSourceError: If no readable trace is found.
        """
        request = request or TraceRequest()
        return resolve_trace_source(
            path=request.path or self.config.trace_path,
            root=request.root or self.config.root_dir,
            project=request.project or self.config.project,
            limit=request.limit or self.config.limit,
        )

    def get_records(self, request: Optional[TraceRequest] = None) -> dict[str, Any]:
        """Raw records plus source bookkeeping."""
        request = request or TraceRequest()
        selection = self.resolve(request)
        excluded = parse_exclude(request.exclude)
        loaded = load_selection(selection, excluded)
        return {
            "trace_path": describe_trace_path(selection, len(loaded.sources)),
            "trace_mode": selection.mode,
            "trace_root": selection.root_dir,
            "project_filter": selection.project_filter,
            "loaded_sessions": len(loaded.sources),
            "discovered_sessions": len(selection.sources),
            "source_files": loaded.sources,
            "discovered_source_files": selection.sources,
            "excluded_source_files": sorted(excluded),
            "total_records": len(loaded.records),
            "malformed_lines": loaded.malformed_lines,
            "records": loaded.records,
        }

    def get_timeline(
        self,
        request: Optional[TraceRequest] = None,
        focus_root: str = ALL_PROJECTS,
        now_ts: Optional[float] = None,
    ) -> TimelineSnapshot:
        request = request or TraceRequest()
        selection = self.resolve(request)
        snapshot = build_timeline_snapshot(
            selection,
            excluded=parse_exclude(request.exclude),
            stale_ms=self.config.stale_ms,
            focus_root=focus_root,
            now_ts=now_ts,
        )
        logger.debug(
            f"Timeline: {snapshot.total_records} records from {snapshot.loaded_sessions} files, "
            f"lag {snapshot.lag_ms}ms"
        )
        return snapshot

    def list_sources(self, request: Optional[TraceRequest] = None) -> list[SourceInfo]:
        request = request or TraceRequest()
        selection = self.resolve(request)
        return source_infos(selection.sources, parse_exclude(request.exclude), now_ms())
