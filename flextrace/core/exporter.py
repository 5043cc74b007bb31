"""
Export a loaded trace as JSON, CSV or Chrome trace-event JSON.

The chrome-trace output loads in chrome://tracing and Perfetto: one complete
("X") event per completed task, one process per session.

Usage:
    export_trace(Path("out.json"), records, ExportFormat.CHROME_TRACE)
"""
import csv
import io
import json
import logging
from enum import StrEnum
from pathlib import Path
from typing import Any, Sequence

from .exceptions import ExportFormatError
from .schemas import TraceRecordBase, dump_record
from .timeline import build_timeline

logger = logging.getLogger(__name__)


class ExportFormat(StrEnum):
    JSON = "json"
    CSV = "csv"
    CHROME_TRACE = "chrome-trace"


CSV_COLUMNS = (
    "type",
    "ts",
    "sessionId",
    "rootSessionId",
    "taskId",
    "parentTaskId",
    "name",
    "kind",
    "status",
    "durationMs",
    "level",
    "value",
)


def parse_export_format(value: str) -> ExportFormat:
    """
    Normalize a user-supplied format name.

    Raises:
        ExportFormatError: If the name is not json, csv or chrome-trace.
    """
    normalized = (value or "").strip().lower()
    try:
        return ExportFormat(normalized)
    except ValueError:
        expected = ", ".join(f.value for f in ExportFormat)
        raise ExportFormatError(f"Invalid format '{value}', expected one of: {expected}") from None


def to_chrome_trace(records: Sequence[TraceRecordBase]) -> dict[str, Any]:
    timeline = build_timeline(records)
    pids: dict[str, int] = {}
    events = []
    for task in timeline.completed_tasks:
        pid = pids.setdefault(task.session_id, len(pids) + 1)
        events.append({
            "name": task.name,
            "cat": task.activity or task.kind or "task",
            "ph": "X",
            "ts": task.start_ts * 1000,
            "dur": task.duration_ms * 1000,
            "pid": pid,
            "tid": 1,
            "args": {
                "sessionId": task.session_id,
                "rootSessionId": task.root_session_id,
                "taskId": task.task_id,
                "agent": task.agent,
                "activity": task.activity,
                "status": task.status,
                "parentTaskId": task.parent_task_id,
            },
        })
    return {"traceEvents": events}


def _csv_cell(value: Any) -> Any:
    return "" if value is None else value


def to_csv(records: Sequence[TraceRecordBase]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for record in records:
        row = dump_record(record)
        if row.get("name") is None:
            row["name"] = row.get("label")
        writer.writerow([_csv_cell(row.get(column)) for column in CSV_COLUMNS])
    return buffer.getvalue()


def render_export(records: Sequence[TraceRecordBase], fmt: ExportFormat) -> str:
    """Serialized export document for records."""
    if fmt == ExportFormat.JSON:
        return json.dumps([dump_record(r) for r in records], indent=2, ensure_ascii=False)
    if fmt == ExportFormat.CHROME_TRACE:
        return json.dumps(to_chrome_trace(records), indent=2, ensure_ascii=False)
    if fmt == ExportFormat.CSV:
        return to_csv(records)
    raise ExportFormatError(f"Unsupported export format: {fmt}")


def export_trace(path: Path, records: Sequence[TraceRecordBase], fmt: ExportFormat) -> Path:
    """
    Write records to path in the given format.

    Returns:
        Path where the export was written.
    """
    content = render_export(records, parse_export_format(str(fmt)))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info(f"Exported {len(records)} records to {path} ({fmt})")
    return path
