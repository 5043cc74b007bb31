"""
Capture session: turns live agent events into trace records.

A CaptureSession owns the writer, the per-session TaskContext and the
capture id for one run of the host. Tool and session hooks write task and
session records; the trace tools (trace_event, trace_counter, trace_task)
let an agent annotate its own work.

Every record except the capture brackets needs a root session id. Events
without one are logged and dropped, never written.

Usage:
    async with CaptureSession(CaptureConfig(root_dir=Path("/tmp/traces"))) as capture:
        await capture.on_session_start(SessionStartEvent("ses_1", "ses_1", label="main"))
        await capture.on_tool_start(ToolStartEvent(
            tool_name="grep", session_id="ses_1", root_session_id="ses_1",
            tool_call_id="call_1", input={"pattern": "TODO"},
        ))
        await capture.on_tool_end(ToolEndEvent(
            tool_name="grep", session_id="ses_1", root_session_id="ses_1",
            tool_call_id="call_1", output="3 matches",
        ))
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..config import CaptureConfig
from .constants import PLUGIN_NAME, TRACE_FILE_SUFFIX, UNKNOWN_SESSION, UNKNOWN_TASK, UNKNOWN_TOOL
from .exceptions import TraceToolError
from .schemas import (
    CaptureEndRecord,
    CaptureStartRecord,
    CounterRecord,
    MarkerRecord,
    SessionRecord,
    TaskEndRecord,
    TaskStartRecord,
    TraceKind,
    TraceLevel,
    TracepointRecord,
    TraceStatus,
)
from .session_writer import SessionTraceWriter
from .task_context import TaskContext, TaskFrame
from .trace_utils import as_dict, merge_attrs, new_id, now_ms, preview, safe_error
from .writer import NDJSONWriter, TraceWriter

logger = logging.getLogger(__name__)

SKILL_TOOL = "skill"
SESSION_COMPLETED = "session.completed"
MISSING_ROOT = {"ok": False, "dropped": True, "reason": "missing_rootSessionId"}
CAPTURE_DISABLED = {"ok": False, "dropped": True, "reason": "capture_disabled"}


# =============================================================================
# Events
# =============================================================================

@dataclass
class ToolStartEvent:
    """A tool call is about to run."""
    tool_name: Optional[str] = None
    session_id: Optional[str] = None
    root_session_id: Optional[str] = None
    agent_id: Optional[str] = None
    tool_call_id: Optional[str] = None
    input: Any = None
    attrs: Optional[dict[str, Any]] = None
    ts: Optional[float] = None


@dataclass
class ToolEndEvent:
    """A tool call finished (error is set when it failed)."""
    tool_name: Optional[str] = None
    session_id: Optional[str] = None
    root_session_id: Optional[str] = None
    agent_id: Optional[str] = None
    tool_call_id: Optional[str] = None
    output: Any = None
    error: Any = None
    usage: Optional[dict[str, Any]] = None
    attrs: Optional[dict[str, Any]] = None
    ts: Optional[float] = None


@dataclass
class SessionStartEvent:
    session_id: str
    root_session_id: str
    parent_session_id: Optional[str] = None
    label: Optional[str] = None
    attrs: Optional[dict[str, Any]] = None
    ts: Optional[float] = None


@dataclass
class SessionEndEvent:
    session_id: str
    root_session_id: str
    attrs: Optional[dict[str, Any]] = None
    ts: Optional[float] = None


@dataclass
class ToolRuntime:
    """Who is calling a trace tool."""
    session_id: Optional[str] = None
    root_session_id: Optional[str] = None
    agent_id: Optional[str] = None
    ts: Optional[float] = None

    def resolved_session_id(self) -> str:
        return self.session_id or self.agent_id or UNKNOWN_SESSION


ToolHandler = Callable[[dict[str, Any], ToolRuntime], Awaitable[dict[str, Any]]]


def _usage_value(usage: Optional[dict[str, Any]], *keys: str) -> Optional[float]:
    if not usage:
        return None
    for key in keys:
        value = usage.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
    return None


def _number(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise TraceToolError(f"'{field}' must be a number")
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        raise TraceToolError(f"'{field}' must be a number, got {value!r}") from None


def _choice(enum_cls: type, value: Any, default: str, field: str) -> Any:
    try:
        return enum_cls(value or default)
    except ValueError:
        allowed = ", ".join(item.value for item in enum_cls)
        raise TraceToolError(f"'{field}' must be one of: {allowed}") from None


def _links(value: Any) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(link, dict) for link in value):
        raise TraceToolError("'links' must be a list of objects")
    return list(value)


# =============================================================================
# Capture Session
# =============================================================================

class CaptureSession:
    """
    Write side of FlexTrace for one host process.

    When config.enabled is False every hook and tool is accepted and nothing
    is written.
    """

    def __init__(self, config: CaptureConfig, writer: Optional[TraceWriter] = None) -> None:
        self.config = config
        self.enabled = config.enabled
        self.writer = writer or self.create_writer(config)
        self.context = TaskContext()
        self.capture_id = new_id()
        self._tools: dict[str, ToolHandler] = {"trace_event": self.trace_event}
        if config.include_counter_tool:
            self._tools["trace_counter"] = self.trace_counter
        if config.include_task_tool:
            self._tools["trace_task"] = self.trace_task

    @staticmethod
    def create_writer(config: CaptureConfig) -> TraceWriter:
        """Single-file writer when out_path is set, session-sharded otherwise."""
        if config.out_path is not None:
            return NDJSONWriter(config.out_path)
        return SessionTraceWriter(config.root_dir, config.project_id, config.max_project_bytes)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def __aenter__(self) -> "CaptureSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    def describe_out_path(self) -> str:
        if self.config.out_path is not None:
            return str(self.config.out_path)
        return f"{self.config.root_dir}/{self.config.project_id}/*{TRACE_FILE_SUFFIX}"

    async def start(self) -> None:
        """Write capture_start with the effective configuration."""
        if not self.enabled:
            return
        attrs = {
            "plugin": PLUGIN_NAME,
            "outPath": self.describe_out_path(),
            "rootDir": str(self.config.root_dir),
            "projectId": self.config.project_id,
            "captureUserMessages": self.config.capture_user_messages,
            "userMessagePreviewMax": self.config.user_message_preview_max,
            "maxProjectBytes": self.config.max_project_bytes,
            **self.config.attrs,
        }
        await self.writer.write(CaptureStartRecord(capture_id=self.capture_id, ts=now_ms(), attrs=attrs))
        logger.info(f"Capture {self.capture_id} started, writing to {attrs['outPath']}")

    async def shutdown(self) -> None:
        """Write capture_end, then flush and close the writer."""
        if not self.enabled:
            return
        await self.writer.write(CaptureEndRecord(capture_id=self.capture_id, ts=now_ms()))
        await self.writer.flush()
        await self.writer.close()
        logger.info(f"Capture {self.capture_id} finished")

    # =========================================================================
    # Tool Hooks
    # =========================================================================

    async def on_tool_start(self, event: ToolStartEvent) -> Optional[str]:
        """
        Open a task for a tool call and push it on the session's stack.

        Returns:
            The task id, or None if the event was dropped.
        """
        if not self.enabled:
            return None
        ts = event.ts if event.ts is not None else now_ms()
        session_id = event.session_id or event.agent_id or UNKNOWN_SESSION
        if not event.root_session_id:
            logger.error(f"Dropping tool start without rootSessionId (tool={event.tool_name}, session={session_id})")
            return None

        task_id = event.tool_call_id or new_id()
        parent = self.context.current(session_id)
        tool_name = event.tool_name or UNKNOWN_TOOL
        is_skill = event.tool_name == SKILL_TOOL
        kind = TraceKind.SKILL if is_skill else TraceKind.TOOL

        attrs = merge_attrs(
            {"toolName": tool_name, "inputPreview": preview(event.input)},
            event.attrs,
        )
        name = tool_name
        if is_skill:
            skill_input = as_dict(event.input) or {}
            attrs["skill"] = {
                "name": skill_input.get("name"),
                "path": skill_input.get("path"),
                "version": skill_input.get("version"),
            }
            name = f"skill:{skill_input.get('name') or 'unknown'}"

        self.context.push(session_id, TaskFrame(task_id=task_id, kind=kind, name=tool_name, started_at=ts))
        await self.writer.write(
            TaskStartRecord(
                ts=ts,
                task_id=task_id,
                session_id=session_id,
                root_session_id=event.root_session_id,
                parent_task_id=parent.task_id if parent else None,
                kind=kind,
                name=name,
                attrs=attrs,
            )
        )
        return task_id

    async def on_tool_end(self, event: ToolEndEvent) -> Optional[str]:
        """
        Close the task of a tool call and pop its frame.

        Returns:
            The task id, or None if the event was dropped.
        """
        if not self.enabled:
            return None
        ts = event.ts if event.ts is not None else now_ms()
        session_id = event.session_id or event.agent_id or UNKNOWN_SESSION
        if not event.root_session_id:
            logger.error(f"Dropping tool end without rootSessionId (tool={event.tool_name}, session={session_id})")
            return None

        current = self.context.current(session_id)
        task_id = event.tool_call_id or (current.task_id if current else UNKNOWN_TASK)
        frame = self.context.pop(session_id, task_id)

        attrs = merge_attrs(
            {
                "toolName": event.tool_name or (frame.name if frame else UNKNOWN_TOOL),
                "outputPreview": preview(event.output) if event.output is not None else None,
                "error": safe_error(event.error) if event.error else None,
            },
            event.attrs,
        )
        await self.writer.write(
            TaskEndRecord(
                ts=ts,
                task_id=task_id,
                session_id=session_id,
                root_session_id=event.root_session_id,
                status=TraceStatus.ERROR if event.error else TraceStatus.OK,
                duration_ms=ts - frame.started_at if frame else None,
                tokens_in=_usage_value(event.usage, "prompt_tokens", "promptTokens"),
                tokens_out=_usage_value(event.usage, "completion_tokens", "completionTokens"),
                attrs=attrs,
            )
        )
        return task_id

    # =========================================================================
    # Session Hooks
    # =========================================================================

    async def on_session_start(self, event: SessionStartEvent) -> None:
        if not self.enabled:
            return
        await self.emit_session_upsert(
            session_id=event.session_id,
            root_session_id=event.root_session_id,
            parent_session_id=event.parent_session_id,
            label=event.label,
            attrs=event.attrs,
            ts=event.ts,
        )

    async def on_session_end(self, event: SessionEndEvent) -> None:
        """Write a session.completed marker and forget the session's open frames."""
        if not self.enabled:
            return
        await self.writer.write(
            MarkerRecord(
                ts=event.ts if event.ts is not None else now_ms(),
                session_id=event.session_id,
                root_session_id=event.root_session_id,
                label=SESSION_COMPLETED,
                attrs=event.attrs,
            )
        )
        self.context.clear(event.session_id)

    # =========================================================================
    # Trace Tools
    # =========================================================================

    async def call_tool(self, name: str, args: dict[str, Any], runtime: ToolRuntime) -> dict[str, Any]:
        """
        Dispatch a trace tool by name.

        Raises:
            TraceToolError: If the tool is unknown or disabled, or the arguments are invalid.
        """
        handler = self._tools.get(name)
        if handler is None:
            raise TraceToolError(f"Unknown trace tool: {name}")
        return await handler(args, runtime)

    async def trace_event(self, args: dict[str, Any], runtime: ToolRuntime) -> dict[str, Any]:
        """Tracepoint attached to the session's current task."""
        if not self.enabled:
            return dict(CAPTURE_DISABLED)
        name = args.get("name")
        if not name:
            raise TraceToolError("trace_event requires 'name'")
        session_id = runtime.resolved_session_id()
        if not runtime.root_session_id:
            logger.error(f"Dropping trace_event without rootSessionId (session={session_id}, name={name})")
            return dict(MISSING_ROOT)

        tp_id = new_id()
        current = self.context.current(session_id)
        await self.writer.write(
            TracepointRecord(
                ts=runtime.ts if runtime.ts is not None else now_ms(),
                tp_id=tp_id,
                session_id=session_id,
                root_session_id=runtime.root_session_id,
                parent_task_id=current.task_id if current else None,
                name=str(name),
                level=_choice(TraceLevel, args.get("level"), TraceLevel.INFO, "level"),
                attrs=as_dict(args.get("attrs")) or {},
                links=_links(args.get("links")),
            )
        )
        return {"ok": True, "tpId": tp_id}

    async def trace_counter(self, args: dict[str, Any], runtime: ToolRuntime) -> dict[str, Any]:
        """Numeric sample for the calling session."""
        if not self.enabled:
            return dict(CAPTURE_DISABLED)
        name = args.get("name")
        if not name or "value" not in args:
            raise TraceToolError("trace_counter requires 'name' and 'value'")
        session_id = runtime.resolved_session_id()
        if not runtime.root_session_id:
            logger.error(f"Dropping trace_counter without rootSessionId (session={session_id}, name={name})")
            return dict(MISSING_ROOT)

        await self.writer.write(
            CounterRecord(
                ts=runtime.ts if runtime.ts is not None else now_ms(),
                session_id=session_id,
                root_session_id=runtime.root_session_id,
                name=str(name),
                value=_number(args["value"], "value"),
                attrs=as_dict(args.get("attrs")) or {},
            )
        )
        return {"ok": True}

    async def trace_task(self, args: dict[str, Any], runtime: ToolRuntime) -> dict[str, Any]:
        """
        Start or end a manual task.

        op=start pushes a frame under the current task. op=end closes the
        explicit taskId, else the current task; the frame is popped (and the
        duration computed) only when the session has a current task.
        """
        if not self.enabled:
            return dict(CAPTURE_DISABLED)
        op = args.get("op")
        if op not in ("start", "end"):
            raise TraceToolError("trace_task requires op 'start' or 'end'")
        ts = runtime.ts if runtime.ts is not None else now_ms()
        session_id = runtime.resolved_session_id()
        if not runtime.root_session_id:
            logger.error(f"Dropping trace_task without rootSessionId (session={session_id}, op={op})")
            return dict(MISSING_ROOT)
        attrs = as_dict(args.get("attrs")) or {}

        if op == "start":
            task_id = str(args.get("taskId") or new_id())
            kind = _choice(TraceKind, args.get("kind"), TraceKind.MANUAL, "kind")
            name = str(args.get("name") or "manual-task")
            parent = self.context.current(session_id)
            self.context.push(session_id, TaskFrame(task_id=task_id, kind=kind, name=name, started_at=ts))
            await self.writer.write(
                TaskStartRecord(
                    ts=ts,
                    task_id=task_id,
                    session_id=session_id,
                    root_session_id=runtime.root_session_id,
                    parent_task_id=parent.task_id if parent else None,
                    kind=kind,
                    name=name,
                    attrs=attrs,
                )
            )
            return {"ok": True, "taskId": task_id}

        current = self.context.current(session_id)
        task_id = str(args.get("taskId") or (current.task_id if current else new_id()))
        frame = self.context.pop(session_id, task_id) if current else None
        await self.writer.write(
            TaskEndRecord(
                ts=ts,
                task_id=task_id,
                session_id=session_id,
                root_session_id=runtime.root_session_id,
                status=_choice(TraceStatus, args.get("status"), TraceStatus.OK, "status"),
                duration_ms=ts - frame.started_at if frame else None,
                attrs=attrs,
            )
        )
        return {"ok": True, "taskId": task_id}

    # =========================================================================
    # Direct API
    # =========================================================================

    async def emit_session_upsert(
        self,
        session_id: str,
        root_session_id: str,
        parent_session_id: Optional[str] = None,
        label: Optional[str] = None,
        attrs: Optional[dict[str, Any]] = None,
        ts: Optional[float] = None,
    ) -> None:
        """Declare or update a session's identity."""
        if not self.enabled:
            return
        await self.writer.write(
            SessionRecord(
                ts=ts if ts is not None else now_ms(),
                session_id=session_id,
                root_session_id=root_session_id,
                parent_session_id=parent_session_id,
                label=label,
                attrs=attrs or {},
            )
        )

    async def emit_event(
        self,
        session_id: str,
        root_session_id: Optional[str],
        name: str,
        level: TraceLevel = TraceLevel.INFO,
        attrs: Optional[dict[str, Any]] = None,
        links: Optional[list[dict[str, Any]]] = None,
        ts: Optional[float] = None,
    ) -> str:
        """
        Write a tracepoint on behalf of the host.

        Returns:
            The tracepoint id (also when the event was dropped for lack of a root).
        """
        tp_id = new_id()
        if not self.enabled:
            return tp_id
        if not root_session_id:
            logger.error(f"Dropping event {name} without rootSessionId (session={session_id})")
            return tp_id
        current = self.context.current(session_id)
        await self.writer.write(
            TracepointRecord(
                ts=ts if ts is not None else now_ms(),
                tp_id=tp_id,
                session_id=session_id,
                root_session_id=root_session_id,
                parent_task_id=current.task_id if current else None,
                name=name,
                level=level,
                attrs=attrs or {},
                links=links or [],
            )
        )
        return tp_id

    async def start_task(
        self,
        session_id: str,
        root_session_id: Optional[str],
        name: str,
        kind: TraceKind = TraceKind.MANUAL,
        attrs: Optional[dict[str, Any]] = None,
        ts: Optional[float] = None,
    ) -> Optional[str]:
        """Open a manual task for the host; returns its id, None when dropped."""
        result = await self.trace_task(
            {"op": "start", "name": name, "kind": kind, "attrs": attrs},
            ToolRuntime(session_id=session_id, root_session_id=root_session_id, ts=ts),
        )
        return result.get("taskId") if result.get("ok") else None

    async def end_task(
        self,
        session_id: str,
        root_session_id: Optional[str],
        task_id: str,
        status: TraceStatus = TraceStatus.OK,
        attrs: Optional[dict[str, Any]] = None,
        ts: Optional[float] = None,
    ) -> None:
        await self.trace_task(
            {"op": "end", "taskId": task_id, "status": status, "attrs": attrs},
            ToolRuntime(session_id=session_id, root_session_id=root_session_id, ts=ts),
        )
