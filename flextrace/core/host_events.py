"""
Host event adapter: maps a coding-agent host's event stream onto a CaptureSession.

The host reports sessions (with parent links for subagents), messages,
message parts (reasoning phases, tool calls) and tool execution hooks. The
adapter keeps the write-side session registry so every record can be routed
to its root session, opens one `agent_run:<agent>` task per session, and
turns message parts into `activity:*` tasks through a PartTaskTracker.

All state lives on the adapter instance; shutdown() force-closes whatever
is still open and shuts the capture session down.

Usage:
    adapter = HostEventAdapter(capture)
    await adapter.handle_event("session.created", {"info": {"id": "ses_1", "title": "main"}})
    await adapter.handle_event("message.updated", {"info": {"sessionID": "ses_1", "role": "assistant", "agent": "build"}})
    await adapter.on_tool_before("grep", "ses_1", "call_1", {"pattern": "TODO"})
    await adapter.on_tool_after("grep", "ses_1", "call_1", output="3 matches")
    await adapter.shutdown()
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .capture import CaptureSession, ToolEndEvent, ToolRuntime, ToolStartEvent
from .constants import (
    AGENT_RUN_PREFIX,
    CODING_TOOLS,
    UNKNOWN_AGENT,
    UNKNOWN_SESSION,
    UNKNOWN_TOOL,
    Activity,
)
from .part_tasks import PartTaskTracker
from .schemas import TraceKind, TraceStatus
from .trace_utils import as_dict, as_str, merge_attrs, new_id, now_ms, truncate_head

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass
class SessionMeta:
    """What the adapter knows about one host session."""
    session_id: str
    root_session_id: str
    parent_session_id: Optional[str] = None
    title: Optional[str] = None
    slug: Optional[str] = None


@dataclass
class _AgentRun:
    agent: str
    task_id: Optional[str] = None


# =============================================================================
# User Message Previews
# =============================================================================

def _first_text(*values: Any) -> Optional[str]:
    for value in values:
        if isinstance(value, str):
            text = _WHITESPACE.sub(" ", value.strip())
            if text:
                return text
        elif isinstance(value, list):
            joined = " ".join(item for item in value if isinstance(item, str) and item)
            text = _WHITESPACE.sub(" ", joined.strip())
            if text:
                return text
    return None


def extract_user_message_preview(info: dict[str, Any], max_chars: int) -> Optional[str]:
    """
    Whitespace-collapsed preview of a user message.

    Looks at text, content, prompt and input, then at each entry of parts.

    Returns:
        The preview truncated to max_chars (with "..."), or None when
        max_chars is 0 or no text is found.
    """
    if max_chars <= 0:
        return None
    direct = _first_text(info.get("text"), info.get("content"), info.get("prompt"), info.get("input"))
    if direct:
        return truncate_head(direct, max_chars)
    parts = info.get("parts")
    if not isinstance(parts, list):
        return None
    for part in parts:
        if isinstance(part, str) and part.strip():
            return truncate_head(part.strip(), max_chars)
        if not isinstance(part, dict):
            continue
        nested = _first_text(
            part.get("text"), part.get("content"), part.get("input"), part.get("prompt"), part.get("value")
        )
        if nested:
            return truncate_head(nested, max_chars)
    return None


def _text_result(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


# =============================================================================
# Adapter
# =============================================================================

class HostEventAdapter:
    """Write-side session registry plus event handlers for one host process."""

    def __init__(self, capture: CaptureSession) -> None:
        self.capture = capture
        self.sessions: dict[str, SessionMeta] = {}
        self.agent_runs: dict[str, _AgentRun] = {}
        self.part_tasks = PartTaskTracker(self._start_part_task, self._end_part_task)
        self.capture_user_messages = capture.config.capture_user_messages
        self.user_message_preview_max = capture.config.user_message_preview_max
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "session.created": self._on_session_created,
            "session.updated": self._on_session_updated,
            "session.idle": self._on_session_idle,
            "session.deleted": self._on_session_deleted,
            "session.error": self._on_session_error,
            "message.updated": self._on_message_updated,
            "message.part.updated": self._on_message_part_updated,
        }

    # =========================================================================
    # Session Registry
    # =========================================================================

    def resolve_root(self, session_id: str) -> Optional[str]:
        """
        Root session id for a session by walking parent links.

        An unregistered session has no root. An unregistered ancestor is
        taken as the root. A parent cycle makes the session its own root.
        """
        if session_id not in self.sessions:
            return None
        visited: set[str] = set()
        current = session_id
        while current not in visited:
            visited.add(current)
            meta = self.sessions.get(current)
            if meta is None or not meta.parent_session_id:
                return current
            current = meta.parent_session_id
        logger.warning(f"Parent cycle detected at session {session_id}")
        return session_id

    def recompute_roots(self) -> None:
        """Re-resolve every registered session (a new upsert can re-parent a subtree)."""
        for session_id, meta in self.sessions.items():
            meta.root_session_id = self.resolve_root(session_id) or session_id

    def root_for(self, session_id: str) -> Optional[str]:
        meta = self.sessions.get(session_id)
        return meta.root_session_id if meta else None

    def upsert_session_meta(
        self,
        session_id: str,
        parent_session_id: Optional[str] = None,
        title: Optional[str] = None,
        slug: Optional[str] = None,
    ) -> SessionMeta:
        previous = self.sessions.get(session_id)
        self.sessions[session_id] = SessionMeta(
            session_id=session_id,
            root_session_id=session_id,
            parent_session_id=parent_session_id or (previous.parent_session_id if previous else None),
            title=title or (previous.title if previous else None),
            slug=slug or (previous.slug if previous else None),
        )
        self.recompute_roots()
        return self.sessions[session_id]

    async def ensure_session_meta(
        self,
        session_id: str,
        parent_session_id: Optional[str] = None,
        title: Optional[str] = None,
        slug: Optional[str] = None,
    ) -> SessionMeta:
        """Register or update a session and write its session upsert."""
        meta = self.upsert_session_meta(session_id, parent_session_id, title, slug)
        await self.capture.emit_session_upsert(
            session_id=meta.session_id,
            root_session_id=meta.root_session_id,
            parent_session_id=meta.parent_session_id,
            label=meta.title,
            attrs=merge_attrs({"sessionTitle": meta.title, "sessionSlug": meta.slug}),
        )
        return meta

    async def _ensure_known(self, session_id: str) -> None:
        if session_id not in self.sessions:
            await self.ensure_session_meta(session_id)

    def _title(self, session_id: str) -> Optional[str]:
        meta = self.sessions.get(session_id)
        return meta.title if meta else None

    # =========================================================================
    # Record Helpers
    # =========================================================================

    def _runtime(self, session_id: str, ts: Optional[float] = None) -> Optional[ToolRuntime]:
        root = self.root_for(session_id)
        if not root:
            logger.error(f"Missing rootSessionId for session {session_id}, dropping record")
            return None
        return ToolRuntime(session_id=session_id, root_session_id=root, ts=ts if ts is not None else now_ms())

    async def _emit(self, session_id: str, name: str, attrs: dict[str, Any], ts: Optional[float] = None) -> None:
        runtime = self._runtime(session_id, ts)
        if runtime is None:
            return
        await self.capture.emit_event(
            session_id, runtime.root_session_id, name, attrs=merge_attrs(attrs), ts=runtime.ts
        )

    async def _start_task(
        self,
        session_id: str,
        name: str,
        attrs: dict[str, Any],
        ts: Optional[float] = None,
    ) -> Optional[str]:
        if "trace_task" not in self.capture.tool_names:
            return None
        runtime = self._runtime(session_id, ts)
        if runtime is None:
            return None
        return await self.capture.start_task(
            session_id, runtime.root_session_id, name,
            kind=TraceKind.MANUAL, attrs=merge_attrs(attrs), ts=runtime.ts,
        )

    async def _end_task(
        self,
        session_id: str,
        task_id: str,
        status: TraceStatus,
        attrs: dict[str, Any],
        ts: Optional[float] = None,
    ) -> None:
        if "trace_task" not in self.capture.tool_names:
            return
        runtime = self._runtime(session_id, ts)
        if runtime is None:
            return
        await self.capture.end_task(
            session_id, runtime.root_session_id, task_id,
            status=status, attrs=merge_attrs(attrs), ts=runtime.ts,
        )

    async def _start_part_task(
        self,
        session_id: str,
        name: str,
        attrs: dict[str, Any],
        start_ts: Optional[float],
    ) -> Optional[str]:
        return await self._start_task(session_id, name, attrs, start_ts)

    async def _end_part_task(
        self,
        session_id: str,
        task_id: str,
        status: TraceStatus,
        attrs: dict[str, Any],
        end_ts: Optional[float],
    ) -> None:
        await self._end_task(session_id, task_id, status, attrs, end_ts)

    # =========================================================================
    # Agent Runs
    # =========================================================================

    async def ensure_agent_run(self, session_id: str, agent: str, ts: Optional[float] = None) -> None:
        """Open the session's agent_run task on the first assistant message."""
        if session_id in self.agent_runs:
            return
        title = self._title(session_id)
        run = _AgentRun(agent=agent)
        self.agent_runs[session_id] = run
        run.task_id = await self._start_task(
            session_id,
            f"{AGENT_RUN_PREFIX}{agent}",
            {"activity": Activity.AGENT_RUN.value, "agent": agent, "sessionTitle": title},
            ts,
        )
        await self._emit(session_id, "agent.run.start", {"agent": agent, "sessionTitle": title}, ts)

    async def finish_agent_run(
        self,
        session_id: str,
        status: TraceStatus = TraceStatus.OK,
        ts: Optional[float] = None,
    ) -> None:
        run = self.agent_runs.pop(session_id, None)
        agent = run.agent if run else None
        title = self._title(session_id)
        if run is not None and run.task_id:
            await self._end_task(
                session_id,
                run.task_id,
                status,
                {"activity": Activity.AGENT_RUN.value, "agent": agent, "sessionTitle": title},
                ts,
            )
        await self._emit(
            session_id, "agent.run.end", {"agent": agent, "status": status.value, "sessionTitle": title}, ts
        )

    # =========================================================================
    # Host Events
    # =========================================================================

    async def handle_event(self, event_type: str, properties: Optional[dict[str, Any]] = None) -> None:
        """Dispatch one host event; unknown event types are ignored."""
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug(f"Ignoring host event {event_type}")
            return
        await handler(properties or {})

    async def _on_session_created(self, props: dict[str, Any]) -> None:
        info = as_dict(props.get("info")) or {}
        session_id = as_str(info.get("id")) or UNKNOWN_SESSION
        title = as_str(info.get("title"))
        slug = info.get("slug")
        meta = await self.ensure_session_meta(session_id, as_str(info.get("parentID")), title, slug)
        await self._emit(session_id, "agent.session.created", {
            "parentSessionId": info.get("parentID"),
            "sessionTitle": title,
            "sessionSlug": slug,
            "rootSessionId": meta.root_session_id,
        })
        if title:
            await self._emit(session_id, "agent.session.meta", {"sessionTitle": title, "sessionSlug": slug})

    async def _on_session_updated(self, props: dict[str, Any]) -> None:
        info = as_dict(props.get("info")) or {}
        session_id = as_str(info.get("id")) or UNKNOWN_SESSION
        title = as_str(info.get("title"))
        slug = info.get("slug")
        meta = await self.ensure_session_meta(session_id, title=title, slug=slug)
        await self._emit(session_id, "agent.session.updated", {
            "sessionTitle": title,
            "sessionSlug": slug,
            "rootSessionId": meta.root_session_id,
        })

    async def _close_session(self, session_id: str, part_status: TraceStatus, run_status: TraceStatus) -> None:
        await self._ensure_known(session_id)
        await self.part_tasks.close_session(session_id, part_status)
        await self.finish_agent_run(session_id, run_status)

    async def _on_session_idle(self, props: dict[str, Any]) -> None:
        session_id = as_str(props.get("sessionID")) or UNKNOWN_SESSION
        await self._close_session(session_id, TraceStatus.UNKNOWN, TraceStatus.OK)

    async def _on_session_deleted(self, props: dict[str, Any]) -> None:
        info = as_dict(props.get("info")) or {}
        session_id = as_str(info.get("id")) or UNKNOWN_SESSION
        await self._close_session(session_id, TraceStatus.UNKNOWN, TraceStatus.OK)

    async def _on_session_error(self, props: dict[str, Any]) -> None:
        session_id = as_str(props.get("sessionID")) or UNKNOWN_SESSION
        await self._close_session(session_id, TraceStatus.ERROR, TraceStatus.ERROR)

    async def _on_message_updated(self, props: dict[str, Any]) -> None:
        info = as_dict(props.get("info"))
        if info is None:
            return
        session_id = as_str(info.get("sessionID")) or UNKNOWN_SESSION
        await self._ensure_known(session_id)
        created = (as_dict(info.get("time")) or {}).get("created")
        role = info.get("role")

        if role == "assistant":
            agent = as_str(info.get("agent")) or UNKNOWN_AGENT
            await self.ensure_agent_run(session_id, agent, created)
        elif role == "user" and self.capture_user_messages:
            await self._emit(session_id, "user.message", {
                "role": "user",
                "messageId": info.get("id"),
                "preview": extract_user_message_preview(info, self.user_message_preview_max),
                "sessionTitle": self._title(session_id),
            }, created)

    async def _on_message_part_updated(self, props: dict[str, Any]) -> None:
        part = as_dict(props.get("part"))
        if part is None:
            return
        part_type = as_str(part.get("type")) or "unknown"
        session_id = as_str(part.get("sessionID")) or UNKNOWN_SESSION
        part_id = as_str(part.get("id")) or new_id()
        await self._ensure_known(session_id)
        run = self.agent_runs.get(session_id)
        agent = run.agent if run else UNKNOWN_AGENT
        title = self._title(session_id)

        if part_type == "reasoning":
            time = as_dict(part.get("time")) or {}
            key = f"reasoning:{part_id}"
            attrs = {"activity": Activity.REASONING.value, "agent": agent, "sessionTitle": title}
            if key not in self.part_tasks:
                await self.part_tasks.start(key, session_id, "activity:reasoning", attrs, time.get("start"))
            if time.get("end"):
                await self.part_tasks.end(key, TraceStatus.OK, time["end"])
            return

        if part_type == "tool":
            await self._on_tool_part(part, session_id, part_id, agent, title)

    async def _on_tool_part(
        self,
        part: dict[str, Any],
        session_id: str,
        part_id: str,
        agent: str,
        title: Optional[str],
    ) -> None:
        tool_name = as_str(part.get("tool")) or UNKNOWN_TOOL
        call_id = as_str(part.get("callID"))
        state = as_dict(part.get("state")) or {}
        status = as_str(state.get("status")) or "unknown"
        state_time = as_dict(state.get("time")) or {}
        key = f"tool:{call_id or part_id}"
        activity = Activity.CODING if tool_name in CODING_TOOLS else Activity.TOOL
        name = f"activity:{activity.value}:{tool_name}"
        attrs = {
            "activity": activity.value,
            "tool": tool_name,
            "agent": agent,
            "callID": call_id,
            "sessionTitle": title,
        }

        if status == "running":
            await self.part_tasks.start(key, session_id, name, attrs, state_time.get("start"))
        elif status in ("completed", "error"):
            if key not in self.part_tasks and state_time.get("start"):
                await self.part_tasks.start(key, session_id, name, attrs, state_time["start"])
            close = TraceStatus.ERROR if status == "error" else TraceStatus.OK
            await self.part_tasks.end(key, close, state_time.get("end"))

    # =========================================================================
    # Tool Hooks and Tools
    # =========================================================================

    async def on_tool_before(
        self,
        tool: str,
        session_id: str,
        call_id: Optional[str],
        args: Optional[dict[str, Any]] = None,
    ) -> Optional[str]:
        """Raw tool call is about to execute."""
        await self._ensure_known(session_id)
        return await self.capture.on_tool_start(
            ToolStartEvent(
                tool_name=tool,
                session_id=session_id,
                root_session_id=self.root_for(session_id),
                tool_call_id=call_id,
                input=args,
                ts=now_ms(),
            )
        )

    async def on_tool_after(
        self,
        tool: str,
        session_id: str,
        call_id: Optional[str],
        output: Optional[str] = None,
        title: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[str]:
        """Raw tool call finished; title and metadata are kept in attrs."""
        await self._ensure_known(session_id)
        return await self.capture.on_tool_end(
            ToolEndEvent(
                tool_name=tool,
                session_id=session_id,
                root_session_id=self.root_for(session_id),
                tool_call_id=call_id,
                output=output,
                attrs=merge_attrs({"title": title, "metadata": metadata}),
                ts=now_ms(),
            )
        )

    async def run_tool(self, name: str, args: dict[str, Any], session_id: Optional[str]) -> str:
        """
        Execute a trace tool on behalf of a session and return its result as text.

        Raises:
            TraceToolError: If the tool is unknown, disabled or given bad arguments.
        """
        session_id = session_id or UNKNOWN_SESSION
        await self._ensure_known(session_id)
        runtime = self._runtime(session_id)
        if runtime is None:
            return f"{name} dropped: missing rootSessionId"
        return _text_result(await self.capture.call_tool(name, args, runtime))

    async def shutdown(self) -> None:
        """Force-close part tasks as unknown, then shut the capture session down."""
        await self.part_tasks.shutdown()
        await self.capture.shutdown()
