"""
Data models for FlexTrace.

Contains the Pydantic models for the persisted trace records (a tagged union
on `type`, one JSON object per NDJSON line) and for the derived views the
reconstruction engine produces (never persisted).

Field names are snake_case in Python and camelCase on the wire.

Usage:
    from .schemas import TaskStartRecord, parse_record, dump_record

    record = TaskStartRecord(
        ts=1000, task_id="t1", session_id="s1", root_session_id="s1",
        kind=TraceKind.TOOL, name="bash",
    )
    line = json.dumps(dump_record(record))
"""
from enum import StrEnum
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    StringConstraints,
    TypeAdapter,
)
from pydantic.alias_generators import to_camel


class TraceKind(StrEnum):
    """Kind of work a task represents."""
    TOOL = "tool"
    SKILL = "skill"
    MODEL = "model"
    MESSAGE = "message"
    MANUAL = "manual"


class TraceStatus(StrEnum):
    """Terminal status of a task."""
    OK = "ok"
    ERROR = "error"
    UNKNOWN = "unknown"


class TraceLevel(StrEnum):
    """Severity of a tracepoint."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


# Status of a reconstructed task: a terminal TraceStatus or still running
TaskViewStatus = Literal["ok", "error", "unknown", "running"]
RUNNING: TaskViewStatus = "running"

NonEmptyStr = Annotated[str, StringConstraints(strict=True, min_length=1)]
StrictNumber = Union[StrictInt, StrictFloat]
Number = Union[int, float]
Attrs = dict[str, Any]


def _loose(*types: type) -> BeforeValidator:
    """Read an optional field as None when the stored value has another type."""
    def check(value: Any) -> Any:
        if isinstance(value, bool) and bool not in types:
            return None
        return value if isinstance(value, types) else None
    return BeforeValidator(check)


def _object_list(value: Any) -> Any:
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, dict)]


# Optional fields never make a record malformed; a wrong type reads as unset
LooseStr = Annotated[Optional[StrictStr], _loose(str)]
LooseNumber = Annotated[Optional[StrictNumber], _loose(int, float)]
LooseAttrs = Annotated[Optional[Attrs], _loose(dict)]
LooseLinks = Annotated[Optional[list[Attrs]], BeforeValidator(_object_list)]


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase JSON keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Persisted Records
# =============================================================================

class TraceRecordBase(CamelModel):
    """
    Fields shared by every record. Unknown keys are kept on round trip.

    `ts` may be absent; reconstruction places such records at the time of the
    record before them.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    ts: LooseNumber = None
    attrs: LooseAttrs = None


class CaptureStartRecord(TraceRecordBase):
    """Opens a capture session; attrs carry the capture configuration."""
    type: Literal["capture_start"] = "capture_start"
    capture_id: LooseStr = None


class CaptureEndRecord(TraceRecordBase):
    """Closes a capture session."""
    type: Literal["capture_end"] = "capture_end"
    capture_id: LooseStr = None


class SessionScopedRecord(TraceRecordBase):
    """Records routed by root session."""
    session_id: NonEmptyStr
    root_session_id: NonEmptyStr


class SessionRecord(SessionScopedRecord):
    """Declares or updates a session's identity. Idempotent."""
    type: Literal["session"] = "session"
    op: Literal["upsert"] = "upsert"
    parent_session_id: LooseStr = None
    label: LooseStr = None


class TaskStartRecord(SessionScopedRecord):
    """Opens a task."""
    type: Literal["task_start"] = "task_start"
    task_id: StrictStr
    name: StrictStr
    parent_task_id: LooseStr = None
    kind: LooseStr = None


class TaskEndRecord(SessionScopedRecord):
    """Closes a task. Readers map a status outside TraceStatus to unknown."""
    type: Literal["task_end"] = "task_end"
    task_id: StrictStr
    status: StrictStr
    duration_ms: LooseNumber = None
    tokens_in: LooseNumber = None
    tokens_out: LooseNumber = None


class TracepointRecord(SessionScopedRecord):
    """Point-in-time annotation, optionally attached to the current task."""
    type: Literal["tracepoint"] = "tracepoint"
    tp_id: StrictStr
    name: StrictStr
    level: LooseStr = None
    parent_task_id: LooseStr = None
    links: LooseLinks = None


class CounterRecord(SessionScopedRecord):
    """Named numeric sample scoped to a session."""
    type: Literal["counter"] = "counter"
    name: StrictStr
    value: StrictNumber


class MarkerRecord(SessionScopedRecord):
    """Labeled point event with no duration."""
    type: Literal["marker"] = "marker"
    label: StrictStr


TraceRecord = Annotated[
    Union[
        CaptureStartRecord,
        CaptureEndRecord,
        SessionRecord,
        TaskStartRecord,
        TaskEndRecord,
        TracepointRecord,
        CounterRecord,
        MarkerRecord,
    ],
    Field(discriminator="type"),
]

TRACE_RECORD_ADAPTER: TypeAdapter = TypeAdapter(TraceRecord)


def parse_record(data: Union[str, bytes, Mapping[str, Any]]) -> TraceRecordBase:
    """
    Validate one record from a JSON line or an already decoded mapping.

    Raises:
        pydantic.ValidationError: If the input is not a valid record.
    """
    if isinstance(data, (str, bytes)):
        return TRACE_RECORD_ADAPTER.validate_json(data)
    return TRACE_RECORD_ADAPTER.validate_python(data)


def dump_record(record: Union[TraceRecordBase, Mapping[str, Any]]) -> dict[str, Any]:
    """Wire form of a record: camelCase keys, unset optionals dropped."""
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json", by_alias=True, exclude_none=True)
    return {key: value for key, value in record.items() if value is not None}


# =============================================================================
# Derived Views (recomputed on every reconstruction, never persisted)
# =============================================================================

class TaskView(CamelModel):
    """A paired start/end span, or a start-only running task."""
    task_id: str
    session_id: str
    root_session_id: str
    parent_task_id: Optional[str] = None
    name: str
    kind: Optional[str] = None
    agent: str
    activity: str
    status: TaskViewStatus
    start_ts: Number
    end_ts: Number
    duration_ms: Number
    attrs: Optional[Attrs] = None


class SessionNode(CamelModel):
    """A session in the parent/child tree."""
    session_id: str
    root_session_id: str
    parent_session_id: Optional[str] = None
    title: str
    children: list[str] = Field(default_factory=list)


class RootSessionView(CamelModel):
    """A root session and the sessions that belong to it."""
    root_session_id: str
    title: str
    session_ids: list[str] = Field(default_factory=list)


class AgentActivityStat(CamelModel):
    """Completed-task totals for one (agent, activity) pair."""
    agent: str
    activity: str
    count: int = 0
    total_ms: Number = 0
    avg_ms: Number = 0
    errors: int = 0


class TimelineData(CamelModel):
    """Everything reconstructed from one snapshot of records."""
    latest_ts: Number
    active_tasks: list[TaskView] = Field(default_factory=list)
    completed_tasks: list[TaskView] = Field(default_factory=list)
    tracepoints: list[TracepointRecord] = Field(default_factory=list)
    counters: list[CounterRecord] = Field(default_factory=list)
    sessions: list[SessionNode] = Field(default_factory=list)
    roots: list[RootSessionView] = Field(default_factory=list)
    by_agent_activity: list[AgentActivityStat] = Field(default_factory=list)


class SessionRow(CamelModel):
    """One session's track, its spans packed into non-overlapping lanes."""
    session_id: str
    agent_name: str
    label: str
    lanes: list[list[TaskView]] = Field(default_factory=list)


class LaneModel(CamelModel):
    """Packed rows plus the overall time range they cover."""
    min_ts: Number
    max_ts: Number
    rows: list[SessionRow] = Field(default_factory=list)


class HandoffLink(CamelModel):
    """Inferred edge from a dispatching task to a child session's first agent run."""
    id: str
    parent_task: TaskView
    child_task: TaskView


class SlowTaskStat(CamelModel):
    """Average duration and error rate for one task name."""
    name: str
    count: int
    avg_duration_ms: Number
    error_rate: float


class TraceSummary(CamelModel):
    """Summary statistics produced by `tracectl analyze`."""
    total_records: int
    total_sessions: int
    total_tasks: int
    error_tasks: int
    total_tracepoints: int
    total_counters: int
    avg_task_duration_ms: Number
    p95_task_duration_ms: Number
    top_slow_tasks: list[SlowTaskStat] = Field(default_factory=list)
    by_agent_activity: list[AgentActivityStat] = Field(default_factory=list)


class SourceInfo(CamelModel):
    """Freshness of one discovered trace file."""
    path: str
    loaded: bool
    excluded: bool
    mtime_ms: Number
    age_ms: Optional[Number] = None
    status: Literal["active", "idle"]


class CaptureSettings(CamelModel):
    """Capture configuration echoed from the latest capture_start record."""
    root_dir: Optional[str] = None
    max_project_bytes: Optional[int] = None
    capture_user_messages: Optional[bool] = None
    user_message_preview_max: Optional[int] = None


class TimelineSnapshot(TimelineData):
    """Timeline plus source bookkeeping, lanes and handoffs for one poll."""
    ok: bool = True
    trace_path: str
    trace_mode: Literal["single", "multi"]
    trace_root: Optional[str] = None
    project_filter: Optional[str] = None
    loaded_sessions: int
    discovered_sessions: int
    source_files: list[str] = Field(default_factory=list)
    discovered_source_files: list[str] = Field(default_factory=list)
    source_infos: list[SourceInfo] = Field(default_factory=list)
    settings: CaptureSettings = Field(default_factory=CaptureSettings)
    excluded_source_files: list[str] = Field(default_factory=list)
    generated_at: Number
    total_records: int
    malformed_lines: int
    lag_ms: Number
    stale_threshold_ms: Number
    is_stale: bool
    lanes: LaneModel
    handoffs: list[HandoffLink] = Field(default_factory=list)
