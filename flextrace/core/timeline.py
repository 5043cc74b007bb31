"""
Timeline reconstruction.

build_timeline() is a pure function over a snapshot of records. It pairs
task_start/task_end records into spans, attributes each span to an agent and
an activity, enriches activity tasks with the raw tool call they mirror,
hides the mirrored raw tool tasks, builds the session tree and root views,
and aggregates completed work per (agent, activity).

Nothing is cached between calls; callers rebuild on every poll.

Running tasks are measured against wall-clock "now" (now_ts, default the
current time), so their durations keep growing while a log is idle.
latest_ts reports the newest record timestamp for lag/staleness checks.

Usage:
    timeline = build_timeline(load_trace_files(paths).records)
    for task in timeline.active_tasks:
        print(task.agent, task.activity, task.duration_ms)
"""
import json
import logging
import re
from collections import Counter
from typing import Any, Optional, Sequence

from .constants import (
    ACTIVITY_PREFIX,
    AGENT_PREFIX,
    AGENT_RUN_PREFIX,
    CALL_ID_PREFIX,
    INTENT_MAX_CHARS,
    UNKNOWN_ACTIVITY,
    UNKNOWN_AGENT,
    UNKNOWN_NAME,
    Activity,
)
from .schemas import (
    RUNNING,
    AgentActivityStat,
    CounterRecord,
    RootSessionView,
    SessionNode,
    SessionRecord,
    SessionScopedRecord,
    TaskEndRecord,
    TaskStartRecord,
    TaskView,
    TimelineData,
    TraceKind,
    TraceRecordBase,
    TracepointRecord,
    TraceStatus,
)
from .trace_utils import as_dict, as_str, attr, merge_attrs, now_ms, shorten_session_id, truncate_head

logger = logging.getLogger(__name__)


# =============================================================================
# Agent Attribution
# =============================================================================

def parse_agent_from_name(name: Optional[str]) -> Optional[str]:
    """Agent named by an `agent_run:<agent>` or `agent:<agent>` task name."""
    text = as_str(name)
    if not text:
        return None
    lower = text.lower()
    for prefix in (AGENT_RUN_PREFIX, AGENT_PREFIX):
        if lower.startswith(prefix):
            return text[len(prefix):].strip() or None
    return None


def _own_agent(start: TaskStartRecord) -> Optional[str]:
    return as_str(attr(start.attrs, "agent")) or parse_agent_from_name(start.name)


class AgentResolver:
    """
    Resolves the agent of a task, cached per task id.

    Precedence: end attrs.agent, start attrs.agent, agent parsed from the
    task name, the parent task's agent (walking parentTaskId), then the
    session's default agent (the first task in that session naming one).
    """

    def __init__(self, starts: dict[str, TaskStartRecord]) -> None:
        self._starts = starts
        self._cache: dict[str, Optional[str]] = {}
        self._session_default: dict[str, str] = {}
        for start in starts.values():
            agent = _own_agent(start)
            if agent and start.session_id not in self._session_default:
                self._session_default[start.session_id] = agent

    def resolve(
        self,
        start: Optional[TaskStartRecord],
        end: Optional[TaskEndRecord] = None,
    ) -> str:
        explicit = as_str(attr(end.attrs, "agent")) if end is not None else None
        if explicit:
            return explicit
        if start is None:
            return UNKNOWN_AGENT
        return self._resolve_start(start) or UNKNOWN_AGENT

    def _resolve_start(self, start: TaskStartRecord) -> Optional[str]:
        # Walk up the parent chain until a task names its agent, a cached
        # answer is found, the chain ends, or a cycle is detected.
        chain: list[TaskStartRecord] = []
        seen: set[str] = set()
        found: Optional[str] = None
        current: Optional[TaskStartRecord] = start
        while current is not None and current.task_id not in seen:
            if current.task_id in self._cache:
                found = self._cache[current.task_id]
                break
            seen.add(current.task_id)
            chain.append(current)
            found = _own_agent(current)
            if found:
                break
            parent_id = current.parent_task_id
            current = self._starts.get(parent_id) if parent_id else None

        # Unwind: an ancestor's agent wins, else each task's session default
        value = found
        for item in reversed(chain):
            value = value or self._session_default.get(item.session_id)
            self._cache[item.task_id] = value
        return self._cache.get(start.task_id, value)


# =============================================================================
# Activity Classification
# =============================================================================

_ACTIVITY_RULES: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"tool|mcp|grep|search|fetch"), Activity.TOOL),
    (re.compile(r"code|edit|write|patch|compile|test|build|fix"), Activity.CODING),
    (re.compile(r"reason|think|analysis|plan|reflect"), Activity.REASONING),
    (re.compile(r"agent|session|skill"), Activity.AGENT_RUN),
)


def classify_activity(
    explicit: Any,
    name: Optional[str],
    kind: Optional[str],
) -> str:
    """
    Activity of a task: explicit attrs.activity, else keyword rules on name|kind.

    Returns:
        One of tool, coding, reasoning, agent_run, or unknown-activity
        (or the explicit value as given).
    """
    given = as_str(explicit)
    if given:
        return given
    if kind == TraceKind.TOOL:
        return str(Activity.TOOL)
    sample = f"{name or ''}|{kind or ''}".lower()
    for pattern, activity in _ACTIVITY_RULES:
        if pattern.search(sample):
            return str(activity)
    return UNKNOWN_ACTIVITY


# =============================================================================
# Mirrored Tool Tasks
# =============================================================================

_SESSION_IN_OUTPUT = re.compile(r"task_id:\s*(ses_[A-Za-z0-9]+)")


def mirrored_call_id(task: TaskView) -> Optional[str]:
    """Call id an activity task mirrors: attrs.callID or a call_* parent."""
    from_attr = as_str(attr(task.attrs, "callID"))
    if from_attr:
        return from_attr
    parent = task.parent_task_id
    if parent and parent.startswith(CALL_ID_PREFIX):
        return parent
    return None


def _parse_preview_object(preview: Optional[str]) -> Optional[dict[str, Any]]:
    if not preview:
        return None
    try:
        return as_dict(json.loads(preview))
    except ValueError:
        return None


def _extract_preview_field(preview: Optional[str], field: str) -> Optional[str]:
    """Pull a string field out of a (possibly truncated) JSON preview."""
    if not preview:
        return None
    match = re.search(rf'"{re.escape(field)}"\s*:\s*"((?:\\.|[^"])*)"', preview)
    if not match or not match.group(1):
        return None
    try:
        return json.loads(f'"{match.group(1)}"')
    except ValueError:
        return match.group(1)


def _preview_field(payload: Optional[dict[str, Any]], preview: Optional[str], field: str) -> Optional[str]:
    return as_str(attr(payload, field)) or _extract_preview_field(preview, field)


def derive_tool_intent(tool_name: str, input_preview: Optional[str]) -> Optional[str]:
    """
    Short description of what a tool call is doing.

    bash: the command; task: "subagent_type / description"; otherwise the
    filePath, the search pattern, or the raw input preview.
    """
    payload = _parse_preview_object(input_preview)
    if tool_name == "bash":
        command = _preview_field(payload, input_preview, "command")
        return truncate_head(command, INTENT_MAX_CHARS) if command else None
    if tool_name == "task":
        parts = [
            _preview_field(payload, input_preview, "subagent_type"),
            _preview_field(payload, input_preview, "description"),
        ]
        combined = " / ".join(p for p in parts if p)
        return truncate_head(combined, INTENT_MAX_CHARS) if combined else None
    for field in ("filePath", "pattern"):
        value = _preview_field(payload, input_preview, field)
        if value:
            return truncate_head(value, INTENT_MAX_CHARS)
    return truncate_head(input_preview, INTENT_MAX_CHARS) if input_preview else None


def find_session_id_in_output(output_preview: Optional[str]) -> Optional[str]:
    if not output_preview:
        return None
    match = _SESSION_IN_OUTPUT.search(output_preview)
    return match.group(1) if match else None


def enrich_mirrored_tool_tasks(tasks: list[TaskView], all_tasks: Sequence[TaskView]) -> list[TaskView]:
    """
    Copy details of the raw tool call onto the activity tasks that mirror it.

    Adds toolTaskId, toolName, toolInputPreview, toolOutputPreview,
    toolChildSessionId and doing to the activity task's attrs.
    """
    tool_by_call_id = {
        task.task_id: task
        for task in all_tasks
        if task.kind == TraceKind.TOOL and task.task_id.startswith(CALL_ID_PREFIX)
    }
    if not tool_by_call_id:
        return tasks

    enriched: list[TaskView] = []
    for task in tasks:
        call_id = mirrored_call_id(task)
        tool_task = tool_by_call_id.get(call_id) if call_id else None
        if tool_task is None or tool_task is task:
            enriched.append(task)
            continue

        tool_name = as_str(attr(tool_task.attrs, "toolName")) or tool_task.name
        input_preview = as_str(attr(tool_task.attrs, "inputPreview"))
        output_preview = as_str(attr(tool_task.attrs, "outputPreview"))
        metadata = as_dict(attr(tool_task.attrs, "metadata"))
        child_session_id = (
            as_str(attr(metadata, "sessionId"))
            or as_str(attr(task.attrs, "childSessionId"))
            or find_session_id_in_output(output_preview)
        )
        attrs = merge_attrs(task.attrs, {
            "toolTaskId": tool_task.task_id,
            "toolName": tool_name,
            "toolInputPreview": input_preview,
            "toolOutputPreview": output_preview,
            "toolChildSessionId": child_session_id,
            "doing": derive_tool_intent(tool_name, input_preview),
        })
        enriched.append(task.model_copy(update={"attrs": attrs}))
    return enriched


def dedupe_mirrored_tasks(
    active: list[TaskView],
    completed: list[TaskView],
) -> tuple[list[TaskView], list[TaskView]]:
    """
    Hide raw tool tasks that an `activity:*` manual task mirrors.

    Call ids are collected across both sets, so a raw tool task disappears
    even when its activity twin is in the other set.
    """
    mirrored: set[str] = set()
    for task in (*active, *completed):
        if task.kind != TraceKind.MANUAL or not task.name.startswith(ACTIVITY_PREFIX):
            continue
        call_id = mirrored_call_id(task)
        if call_id:
            mirrored.add(call_id)
    if not mirrored:
        return active, completed

    def keep(task: TaskView) -> bool:
        return task.kind != TraceKind.TOOL or task.task_id not in mirrored

    return [t for t in active if keep(t)], [t for t in completed if keep(t)]


# =============================================================================
# Session Tree
# =============================================================================

def _session_title(record: SessionRecord, previous: Optional[SessionNode]) -> str:
    return (
        as_str(attr(record.attrs, "sessionTitle"))
        or as_str(record.label)
        or (previous.title if previous else None)
        or shorten_session_id(record.session_id)
    )


def build_session_tree(
    records: Sequence[TraceRecordBase],
) -> tuple[list[SessionNode], list[RootSessionView]]:
    """
    Session nodes (linked parent to children) and root views.

    Session upserts create or update nodes; sessions only referenced by other
    records get synthesized nodes titled with their shortened id.

    Returns:
        (sessions, roots), both sorted by title.
    """
    nodes: dict[str, SessionNode] = {}
    roots: dict[str, RootSessionView] = {}

    def ensure_root(root_session_id: str, session_id: str) -> None:
        root = roots.get(root_session_id)
        if root is None:
            root = RootSessionView(
                root_session_id=root_session_id,
                title=shorten_session_id(root_session_id),
            )
            roots[root_session_id] = root
        if session_id not in root.session_ids:
            root.session_ids.append(session_id)

    for record in records:
        if not isinstance(record, SessionRecord):
            continue
        previous = nodes.get(record.session_id)
        nodes[record.session_id] = SessionNode(
            session_id=record.session_id,
            root_session_id=record.root_session_id,
            parent_session_id=record.parent_session_id or (previous.parent_session_id if previous else None),
            title=_session_title(record, previous),
        )
        ensure_root(record.root_session_id, record.session_id)

    for record in records:
        if not isinstance(record, SessionScopedRecord):
            continue
        ensure_root(record.root_session_id, record.session_id)
        for session_id in (record.session_id, record.root_session_id):
            if session_id not in nodes:
                nodes[session_id] = SessionNode(
                    session_id=session_id,
                    root_session_id=record.root_session_id,
                    title=shorten_session_id(session_id),
                )

    for node in nodes.values():
        parent_id = node.parent_session_id
        if not parent_id or parent_id == node.session_id:
            continue
        parent = nodes.get(parent_id)
        if parent is not None and node.session_id not in parent.children:
            parent.children.append(node.session_id)

    for root in roots.values():
        if root.root_session_id not in root.session_ids:
            root.session_ids.insert(0, root.root_session_id)
        node = nodes.get(root.root_session_id)
        if node is not None:
            root.title = node.title

    sessions = sorted(nodes.values(), key=lambda n: (n.title, n.session_id))
    root_views = sorted(roots.values(), key=lambda r: (r.title, r.root_session_id))
    return sessions, root_views


# =============================================================================
# Aggregation
# =============================================================================

def aggregate_by_agent_activity(tasks: Sequence[TaskView]) -> list[AgentActivityStat]:
    """Count, total and errors per (agent, activity), largest total first."""
    stats: dict[tuple[str, str], AgentActivityStat] = {}
    for task in tasks:
        agent = task.agent or UNKNOWN_AGENT
        activity = task.activity or UNKNOWN_ACTIVITY
        stat = stats.get((agent, activity))
        if stat is None:
            stat = AgentActivityStat(agent=agent, activity=activity)
            stats[(agent, activity)] = stat
        stat.count += 1
        stat.total_ms += task.duration_ms
        if task.status == "error":
            stat.errors += 1

    for stat in stats.values():
        stat.avg_ms = stat.total_ms / stat.count if stat.count else 0
    return sorted(stats.values(), key=lambda s: (-s.total_ms, s.agent, s.activity))


# =============================================================================
# Reconstruction
# =============================================================================

def fill_missing_timestamps(records: Sequence[TraceRecordBase]) -> list[TraceRecordBase]:
    """Copies of records without `ts` placed at the previous record's time (0 before any)."""
    filled = []
    last_ts: float = 0
    for record in records:
        if record.ts is None:
            record = record.model_copy(update={"ts": last_ts})
        else:
            last_ts = record.ts
        filled.append(record)
    return filled


_TERMINAL_STATUSES = {status.value for status in TraceStatus}


def _view_status(status: str) -> str:
    return status if status in _TERMINAL_STATUSES else TraceStatus.UNKNOWN.value


def _completed_view(
    end: TaskEndRecord,
    start: Optional[TaskStartRecord],
    resolver: AgentResolver,
) -> TaskView:
    if start is not None:
        start_ts = start.ts
    elif end.duration_ms is not None:
        start_ts = end.ts - end.duration_ms
    else:
        start_ts = end.ts

    if end.duration_ms is not None:
        duration_ms = end.duration_ms
    else:
        duration_ms = max(0, end.ts - start_ts)

    start_attrs = start.attrs if start is not None else None
    name = start.name if start is not None else (as_str(attr(end.attrs, "toolName")) or UNKNOWN_NAME)
    kind = start.kind if start is not None else None
    explicit_activity = attr(start_attrs, "activity") or attr(end.attrs, "activity")

    return TaskView(
        task_id=end.task_id,
        session_id=end.session_id,
        root_session_id=end.root_session_id,
        parent_task_id=(start.parent_task_id if start is not None else None)
        or as_str(attr(end.attrs, "parentTaskId")),
        name=name,
        kind=kind,
        agent=resolver.resolve(start, end),
        activity=classify_activity(explicit_activity, name, kind),
        status=_view_status(end.status),
        start_ts=start_ts,
        end_ts=end.ts,
        duration_ms=duration_ms,
        attrs=merge_attrs(start_attrs, end.attrs),
    )


def _active_view(start: TaskStartRecord, now: float, resolver: AgentResolver) -> TaskView:
    end_ts = max(now, start.ts)
    return TaskView(
        task_id=start.task_id,
        session_id=start.session_id,
        root_session_id=start.root_session_id,
        parent_task_id=start.parent_task_id,
        name=start.name,
        kind=start.kind,
        agent=resolver.resolve(start),
        activity=classify_activity(attr(start.attrs, "activity"), start.name, start.kind),
        status=RUNNING,
        start_ts=start.ts,
        end_ts=end_ts,
        duration_ms=end_ts - start.ts,
        attrs=merge_attrs(start.attrs),
    )


def build_timeline(
    records: Sequence[TraceRecordBase],
    now_ts: Optional[float] = None,
) -> TimelineData:
    """
    Reconstruct the timeline from a snapshot of records.

    Args:
        records: Validated records in arrival order (possibly from several files).
        now_ts: Epoch ms used to measure running tasks; defaults to wall clock.

    Returns:
        TimelineData with active tasks (longest first), completed tasks
        (most recently ended first), tracepoints, counters, sessions, roots
        and per agent/activity totals.
    """
    now = now_ms() if now_ts is None else now_ts
    latest_ts = max((record.ts for record in records if record.ts is not None), default=0)
    records = fill_missing_timestamps(records)

    starts: dict[str, TaskStartRecord] = {}
    for record in records:
        if isinstance(record, TaskStartRecord):
            starts[record.task_id] = record

    resolver = AgentResolver(starts)
    completed: list[TaskView] = []
    ended: set[str] = set()
    for record in records:
        if not isinstance(record, TaskEndRecord):
            continue
        if record.task_id in ended:
            logger.debug(f"Ignoring duplicate task_end for {record.task_id}")
            continue
        ended.add(record.task_id)
        completed.append(_completed_view(record, starts.get(record.task_id), resolver))

    active = [
        _active_view(start, now, resolver)
        for task_id, start in starts.items()
        if task_id not in ended
    ]

    every_task = [*completed, *active]
    completed = enrich_mirrored_tool_tasks(completed, every_task)
    active = enrich_mirrored_tool_tasks(active, every_task)
    active, completed = dedupe_mirrored_tasks(active, completed)

    sessions, roots = build_session_tree(records)

    active.sort(key=lambda t: (-t.duration_ms, -t.end_ts, t.name))
    completed.sort(key=lambda t: (-t.end_ts, t.name, t.task_id))

    return TimelineData(
        latest_ts=latest_ts,
        active_tasks=active,
        completed_tasks=completed,
        tracepoints=[r for r in records if isinstance(r, TracepointRecord)],
        counters=[r for r in records if isinstance(r, CounterRecord)],
        sessions=sessions,
        roots=roots,
        by_agent_activity=aggregate_by_agent_activity(completed),
    )


def agent_names(tasks: Sequence[TaskView]) -> Counter:
    """How often each known agent appears among tasks."""
    return Counter(t.agent for t in tasks if t.agent and t.agent != UNKNOWN_AGENT)
