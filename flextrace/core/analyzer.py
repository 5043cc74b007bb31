"""
Summary statistics over a loaded trace.

Usage:
    summary = analyze_trace(load_trace(path).records)
    save_summary(summary, Path("summary.json"))
"""
import json
import logging
import math
from collections import defaultdict
from pathlib import Path
from typing import Optional, Sequence

from .constants import TOP_SLOW_TASKS
from .schemas import (
    CounterRecord,
    SessionScopedRecord,
    SlowTaskStat,
    TaskView,
    TraceRecordBase,
    TracepointRecord,
    TraceSummary,
)
from .timeline import build_timeline

logger = logging.getLogger(__name__)


def percentile_index(count: int, fraction: float) -> int:
    """Index of a nearest-rank percentile in a sorted list of `count` values."""
    return min(count - 1, math.floor(count * fraction))


def slowest_task_names(tasks: Sequence[TaskView], limit: int = TOP_SLOW_TASKS) -> list[SlowTaskStat]:
    """Task names with the highest average duration."""
    grouped: dict[str, list[TaskView]] = defaultdict(list)
    for task in tasks:
        grouped[task.name].append(task)

    stats = [
        SlowTaskStat(
            name=name,
            count=len(items),
            avg_duration_ms=sum(t.duration_ms for t in items) / len(items),
            error_rate=sum(1 for t in items if t.status == "error") / len(items),
        )
        for name, items in grouped.items()
    ]
    stats.sort(key=lambda s: (-s.avg_duration_ms, s.name))
    return stats[:limit]


def analyze_trace(
    records: Sequence[TraceRecordBase],
    now_ts: Optional[float] = None,
) -> TraceSummary:
    """
    Summarize a trace: totals, duration statistics, slow task names and
    per agent/activity totals.

    Task statistics cover completed tasks after mirrored tool tasks are
    hidden, so each tool call is counted once.
    """
    timeline = build_timeline(records, now_ts=now_ts)
    tasks = timeline.completed_tasks
    durations = sorted(t.duration_ms for t in tasks)

    if durations:
        avg = sum(durations) / len(durations)
        p95 = durations[percentile_index(len(durations), 0.95)]
    else:
        avg = 0
        p95 = 0

    sessions = {r.session_id for r in records if isinstance(r, SessionScopedRecord)}
    return TraceSummary(
        total_records=len(records),
        total_sessions=len(sessions),
        total_tasks=len(tasks),
        error_tasks=sum(1 for t in tasks if t.status == "error"),
        total_tracepoints=sum(1 for r in records if isinstance(r, TracepointRecord)),
        total_counters=sum(1 for r in records if isinstance(r, CounterRecord)),
        avg_task_duration_ms=avg,
        p95_task_duration_ms=p95,
        top_slow_tasks=slowest_task_names(tasks),
        by_agent_activity=timeline.by_agent_activity,
    )


def save_summary(summary: TraceSummary, target_path: Path) -> Path:
    """
    Write a summary as indented JSON.

    Returns:
        Path where the summary was saved.
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)
    with target_path.open("w", encoding="utf-8") as f:
        json.dump(summary.model_dump(mode="json", by_alias=True), f, indent=2)
    logger.info(f"Saved trace summary to {target_path}")
    return target_path
