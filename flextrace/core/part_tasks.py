"""
State machine for message-part tasks whose start and end race each other.

A part (a reasoning phase, a tool call surfaced as a message part) reports its
start and end asynchronously, and the task_start write itself is awaited, so
an end can arrive before the start has produced a task id. Each logical key
(`tool:<callId>`, `reasoning:<partId>`) moves through:

    absent --start--> pending --start written--> running --end--> (closed)
                         |                          |
                        end                        end
                         v                          v
                       ending --start written--> (closed with buffered status)

Close statuses buffered while ending are merged by severity
(error > unknown > ok); the latest end timestamp wins.

Usage:
    tracker = PartTaskTracker(start_handler, end_handler)
    await tracker.start("tool:call_1", "ses_1", "activity:tool:grep", attrs, start_ts)
    await tracker.end("tool:call_1", TraceStatus.OK, end_ts)
    await tracker.shutdown()   # force-closes leftovers with status unknown
"""
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Awaitable, Callable, Optional

from .schemas import TraceStatus

logger = logging.getLogger(__name__)

# (session_id, name, attrs, start_ts) -> task id, or None when nothing was written
StartHandler = Callable[[str, str, dict[str, Any], Optional[float]], Awaitable[Optional[str]]]
# (session_id, task_id, status, attrs, end_ts)
EndHandler = Callable[[str, str, TraceStatus, dict[str, Any], Optional[float]], Awaitable[None]]

_SEVERITY: dict[TraceStatus, int] = {
    TraceStatus.OK: 1,
    TraceStatus.UNKNOWN: 2,
    TraceStatus.ERROR: 3,
}


class PartTaskState(StrEnum):
    """Lifecycle state of one part task."""
    PENDING = "pending"
    RUNNING = "running"
    ENDING = "ending"


@dataclass
class PartTaskEntry:
    """Bookkeeping for one in-flight part task."""
    state: PartTaskState
    session_id: str
    attrs: dict[str, Any]
    task_id: Optional[str] = None
    close_status: Optional[TraceStatus] = None
    close_ts: Optional[float] = None


def merge_close_status(
    previous: Optional[TraceStatus],
    new: TraceStatus,
) -> TraceStatus:
    """Keep the more severe of two close statuses (ties prefer the newer)."""
    if previous is None:
        return new
    return new if _SEVERITY[new] >= _SEVERITY[previous] else previous


class PartTaskTracker:
    """Per-key pending/running/ending machine around async start/end writes."""

    def __init__(self, start_handler: StartHandler, end_handler: EndHandler) -> None:
        self._start_handler = start_handler
        self._end_handler = end_handler
        self._entries: dict[str, PartTaskEntry] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[PartTaskEntry]:
        return self._entries.get(key)

    def keys_for_session(self, session_id: str) -> list[str]:
        return [key for key, entry in self._entries.items() if entry.session_id == session_id]

    async def start(
        self,
        key: str,
        session_id: str,
        name: str,
        attrs: dict[str, Any],
        start_ts: Optional[float] = None,
    ) -> None:
        """
        Request the start of a part task.

        Ignored while the key is already pending or running. If an end arrives
        while the task_start write is in flight, the task is closed as soon as
        the write completes.
        """
        existing = self._entries.get(key)
        if existing is not None and existing.state in (PartTaskState.PENDING, PartTaskState.RUNNING):
            return

        entry = PartTaskEntry(state=PartTaskState.PENDING, session_id=session_id, attrs=attrs)
        self._entries[key] = entry

        try:
            task_id = await self._start_handler(session_id, name, attrs, start_ts)
        except Exception:
            self._discard(key, entry)
            raise

        if self._entries.get(key) is not entry:
            return
        if not task_id:
            self._discard(key, entry)
            return

        entry.task_id = task_id
        if entry.state == PartTaskState.ENDING:
            status = entry.close_status or TraceStatus.UNKNOWN
            try:
                await self._end_handler(session_id, task_id, status, attrs, entry.close_ts)
            finally:
                self._discard(key, entry)
            return

        entry.state = PartTaskState.RUNNING

    async def end(
        self,
        key: str,
        status: TraceStatus,
        end_ts: Optional[float] = None,
    ) -> None:
        """
        Request the end of a part task.

        Running tasks are closed immediately; pending ones buffer the merged
        status until their start completes. Unknown keys are ignored.
        """
        entry = self._entries.get(key)
        if entry is None:
            return

        if entry.state == PartTaskState.RUNNING and entry.task_id:
            entry.state = PartTaskState.ENDING
            entry.close_status = status
            entry.close_ts = end_ts
            try:
                await self._end_handler(entry.session_id, entry.task_id, status, entry.attrs, end_ts)
            finally:
                self._discard(key, entry)
            return

        entry.state = PartTaskState.ENDING
        entry.close_status = merge_close_status(entry.close_status, status)
        if end_ts is not None:
            entry.close_ts = end_ts

    async def close_session(self, session_id: str, status: TraceStatus) -> None:
        """End every part task of one session."""
        for key in self.keys_for_session(session_id):
            await self.end(key, status)

    async def shutdown(self) -> None:
        """Force-close every lingering part task with status unknown."""
        keys = list(self._entries)
        if keys:
            logger.info(f"Force-closing {len(keys)} lingering part tasks")
        for key in keys:
            await self.end(key, TraceStatus.UNKNOWN)

    def _discard(self, key: str, entry: PartTaskEntry) -> None:
        if self._entries.get(key) is entry:
            del self._entries[key]
