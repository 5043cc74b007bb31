"""
Heuristic handoff inference between parent and child sessions.

A child session's first agent run is linked to the parent-session task that
most plausibly dispatched it: preferably a `task` tool call or a subagent
task, otherwise any parent task, whichever started closest in time.
"""
import logging
from typing import Optional, Sequence

from .constants import AGENT_RUN_PREFIX
from .schemas import HandoffLink, SessionNode, SessionRow, TaskView
from .trace_utils import as_str, attr

logger = logging.getLogger(__name__)

DISPATCH_TOOL = "task"


def _row_tasks(row: SessionRow) -> list[TaskView]:
    return [task for lane in row.lanes for task in lane]


def first_agent_run(tasks: Sequence[TaskView]) -> Optional[TaskView]:
    """Earliest task whose name starts with `agent_run:`."""
    runs = [t for t in tasks if t.name.lower().startswith(AGENT_RUN_PREFIX)]
    if not runs:
        return None
    return min(runs, key=lambda t: t.start_ts)


def is_dispatch_task(task: TaskView) -> bool:
    tool = as_str(attr(task.attrs, "toolName")) or as_str(attr(task.attrs, "tool"))
    name = task.name.lower()
    return (
        (tool or "").lower() == DISPATCH_TOOL
        or name == DISPATCH_TOOL
        or ":task" in name
        or "subagent" in name
    )


def pick_dispatch_task(parent_tasks: Sequence[TaskView], child_start: float) -> Optional[TaskView]:
    """Closest-starting dispatch candidate; any parent task if none qualifies."""
    candidates = [t for t in parent_tasks if is_dispatch_task(t)] or list(parent_tasks)
    if not candidates:
        return None
    return min(candidates, key=lambda t: (abs(t.start_ts - child_start), t.start_ts))


def infer_handoffs(rows: Sequence[SessionRow], sessions: Sequence[SessionNode]) -> list[HandoffLink]:
    """
    One handoff link per child session that has an agent run.

    Args:
        rows: Packed session rows (tasks per session).
        sessions: Session tree nodes, for parent lookup.

    Returns:
        Links in row order.
    """
    nodes = {node.session_id: node for node in sessions}
    tasks_by_session = {row.session_id: _row_tasks(row) for row in rows}

    links: list[HandoffLink] = []
    for row in rows:
        child_run = first_agent_run(tasks_by_session[row.session_id])
        if child_run is None:
            continue
        node = nodes.get(row.session_id)
        parent_id = node.parent_session_id if node else None
        if not parent_id or parent_id == row.session_id:
            continue
        parent_tasks = tasks_by_session.get(parent_id)
        if not parent_tasks:
            continue
        parent_task = pick_dispatch_task(parent_tasks, child_run.start_ts)
        if parent_task is None:
            continue
        links.append(
            HandoffLink(
                id=f"{parent_task.task_id}->{row.session_id}",
                parent_task=parent_task,
                child_task=child_run,
            )
        )

    logger.debug(f"Inferred {len(links)} handoffs across {len(rows)} rows")
    return links
