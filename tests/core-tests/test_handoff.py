"""
Tests for handoff inference between parent and child sessions.
"""
from typing import Any, Optional

import pytest

from flextrace.core.handoff import first_agent_run, infer_handoffs, is_dispatch_task, pick_dispatch_task
from flextrace.core.lanes import build_session_rows
from flextrace.core.schemas import SessionNode, TaskView


def _task(
    task_id: str,
    start: float,
    name: str,
    session: str = "ses_parent",
    attrs: Optional[dict[str, Any]] = None,
) -> TaskView:
    return TaskView(
        task_id=task_id, session_id=session, root_session_id="ses_parent", name=name,
        agent="build", activity="tool", status="ok", start_ts=start, end_ts=start + 10,
        duration_ms=10, attrs=attrs,
    )


def _sessions() -> list[SessionNode]:
    return [
        SessionNode(session_id="ses_parent", root_session_id="ses_parent", title="Parent"),
        SessionNode(
            session_id="ses_child", root_session_id="ses_parent",
            parent_session_id="ses_parent", title="Child",
        ),
    ]


class TestDispatchCandidates:
    """Tests for the dispatch-task heuristics."""

    @pytest.mark.unit
    @pytest.mark.parametrize("name,attrs,expected", [
        ("anything", {"toolName": "task"}, True),
        ("anything", {"tool": "Task"}, True),
        ("task", None, True),
        ("activity:tool:task", None, True),
        ("spawn subagent", None, True),
        ("activity:tool:grep", None, False),
    ])
    def test_is_dispatch_task(self, name, attrs, expected) -> None:
        assert is_dispatch_task(_task("t", 0, name, attrs=attrs)) is expected

    @pytest.mark.unit
    def test_closest_candidate_then_earliest(self) -> None:
        tasks = [_task("a", 90, "task"), _task("b", 110, "task"), _task("c", 99, "grep")]

        assert pick_dispatch_task(tasks, 100).task_id == "a"

    @pytest.mark.unit
    def test_first_agent_run(self) -> None:
        tasks = [
            _task("late", 50, "agent_run:explore", session="ses_child"),
            _task("early", 20, "Agent_Run:explore", session="ses_child"),
            _task("other", 0, "grep", session="ses_child"),
        ]

        assert first_agent_run(tasks).task_id == "early"
        assert first_agent_run(tasks[2:]) is None


class TestInferHandoffs:
    """Tests for infer_handoffs()."""

    @pytest.mark.unit
    def test_prefers_dispatch_task_over_closer_task(self) -> None:
        tasks = [
            _task("p_task", 1000, "activity:tool:task"),
            _task("p_grep", 1900, "activity:tool:grep"),
            _task("c_run", 2000, "agent_run:explore", session="ses_child"),
        ]
        rows = build_session_rows(tasks, _sessions())

        [link] = infer_handoffs(rows, _sessions())

        assert link.id == "p_task->ses_child"
        assert link.parent_task.task_id == "p_task"
        assert link.child_task.task_id == "c_run"

    @pytest.mark.unit
    def test_falls_back_to_closest_parent_task(self) -> None:
        tasks = [
            _task("p_read", 1000, "read"),
            _task("p_grep", 1900, "grep"),
            _task("c_run", 2000, "agent_run:explore", session="ses_child"),
        ]
        rows = build_session_rows(tasks, _sessions())

        [link] = infer_handoffs(rows, _sessions())

        assert link.parent_task.task_id == "p_grep"

    @pytest.mark.unit
    def test_no_link_without_parent_tasks_or_agent_run(self) -> None:
        child_only = [_task("c_run", 2000, "agent_run:explore", session="ses_child")]
        assert infer_handoffs(build_session_rows(child_only, _sessions()), _sessions()) == []

        no_run = [_task("p", 0, "task"), _task("c", 5, "grep", session="ses_child")]
        assert infer_handoffs(build_session_rows(no_run, _sessions()), _sessions()) == []

    @pytest.mark.unit
    def test_root_session_has_no_handoff(self) -> None:
        tasks = [_task("run", 0, "agent_run:build")]

        assert infer_handoffs(build_session_rows(tasks, _sessions()), _sessions()) == []
