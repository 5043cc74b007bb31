"""
Per-session stack of open task frames.

Used only while handling live events: the frame on top of a session's stack
becomes the parentTaskId of new tasks and tracepoints, and its start time
yields durationMs when the task ends. Log replay never consults it.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import DefaultDict, Optional


@dataclass
class TaskFrame:
    """An open task on a session's stack."""
    task_id: str
    kind: str
    name: str
    started_at: float


class TaskContext:
    """Stacks of open TaskFrames keyed by session id."""

    def __init__(self) -> None:
        self._stacks: DefaultDict[str, list[TaskFrame]] = defaultdict(list)

    def push(self, session_id: str, frame: TaskFrame) -> None:
        self._stacks[session_id].append(frame)

    def pop(self, session_id: str, task_id: str) -> Optional[TaskFrame]:
        """
        Remove and return the frame for task_id.

        The top of the stack is checked first; otherwise the whole stack is
        searched and the frame spliced out, so out-of-order closes leave the
        remaining frames in place.

        Returns:
            The removed frame, or None if the session has no such frame.
        """
        stack = self._stacks.get(session_id)
        if not stack:
            return None
        if stack[-1].task_id == task_id:
            return stack.pop()
        for index, frame in enumerate(stack):
            if frame.task_id == task_id:
                return stack.pop(index)
        return None

    def current(self, session_id: str) -> Optional[TaskFrame]:
        stack = self._stacks.get(session_id)
        return stack[-1] if stack else None

    def clear(self, session_id: str) -> None:
        self._stacks.pop(session_id, None)

    def depth(self, session_id: str) -> int:
        return len(self._stacks.get(session_id, ()))
