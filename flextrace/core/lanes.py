"""
Lane packing for the timeline view.

Each session becomes a row; within a row, overlapping spans are stacked into
lanes so that no two spans in the same lane overlap in [start_ts, end_ts).
"""
from collections import defaultdict
from typing import Optional, Sequence

from .constants import ALL_PROJECTS, UNKNOWN_AGENT
from .schemas import LaneModel, SessionNode, SessionRow, TaskView, TimelineData
from .timeline import agent_names
from .trace_utils import shorten_session_id

# A focus of "all" shows every root session
ALL_ROOTS = ALL_PROJECTS


def pack_lanes(spans: Sequence[TaskView]) -> list[list[TaskView]]:
    """
    Greedy first-fit packing of spans into non-overlapping lanes.

    Spans are taken in start order; each goes into the first lane whose last
    span ended at or before its start, else opens a new lane.
    """
    lanes: list[list[TaskView]] = []
    lane_ends: list[float] = []
    for span in sorted(spans, key=lambda s: (s.start_ts, s.end_ts)):
        for index, last_end in enumerate(lane_ends):
            if last_end <= span.start_ts:
                lanes[index].append(span)
                lane_ends[index] = max(last_end, span.end_ts)
                break
        else:
            lanes.append([span])
            lane_ends.append(span.end_ts)
    return lanes


def _row_agent(tasks: Sequence[TaskView]) -> str:
    counts = agent_names(tasks)
    if not counts:
        return UNKNOWN_AGENT
    # Most frequent; ties go to the agent seen first
    return counts.most_common(1)[0][0]


def build_session_rows(
    tasks: Sequence[TaskView],
    sessions: Sequence[SessionNode],
    focus_root: str = ALL_ROOTS,
) -> list[SessionRow]:
    """
    Group spans by session and pack each group into lanes.

    Args:
        tasks: Completed and active spans.
        sessions: Session nodes, for row labels.
        focus_root: Root session id to restrict to, or "all".

    Returns:
        Rows ordered root sessions first (the focused root when one is
        given), then by earliest start, then by label.
    """
    titles = {node.session_id: node.title for node in sessions}
    by_session: dict[str, list[TaskView]] = defaultdict(list)
    for task in tasks:
        if focus_root != ALL_ROOTS and task.root_session_id != focus_root:
            continue
        by_session[task.session_id].append(task)

    ordered: list[tuple[tuple, SessionRow]] = []
    for session_id, session_tasks in by_session.items():
        label = titles.get(session_id) or shorten_session_id(session_id)
        if focus_root == ALL_ROOTS:
            is_root = any(t.root_session_id == session_id for t in session_tasks)
        else:
            is_root = session_id == focus_root
        first_start = min(t.start_ts for t in session_tasks)
        row = SessionRow(
            session_id=session_id,
            agent_name=_row_agent(session_tasks),
            label=label,
            lanes=pack_lanes(session_tasks),
        )
        ordered.append(((0 if is_root else 1, first_start, label), row))

    ordered.sort(key=lambda item: item[0])
    return [row for _, row in ordered]


def build_lane_model(
    timeline: TimelineData,
    focus_root: str = ALL_ROOTS,
    fallback_ts: Optional[float] = None,
) -> LaneModel:
    """
    Rows plus the time range they span.

    With no spans the range is the second before fallback_ts (default the
    timeline's latest_ts).
    """
    spans = [*timeline.completed_tasks, *timeline.active_tasks]
    rows = build_session_rows(spans, timeline.sessions, focus_root)
    shown = [span for row in rows for lane in row.lanes for span in lane]
    if shown:
        min_ts = min(s.start_ts for s in shown)
        max_ts = max(s.end_ts for s in shown)
    else:
        max_ts = timeline.latest_ts if fallback_ts is None else fallback_ts
        min_ts = max(0, max_ts - 1000)
    return LaneModel(min_ts=min_ts, max_ts=max_ts, rows=rows)
