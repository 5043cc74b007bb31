"""
Tests for the part-task state machine.

Covers:
- Start then end closes with the given status
- End arriving while the start write is in flight
- Severity merge of buffered close statuses
- Discarded starts and forced shutdown
"""
import asyncio
from typing import Any, Optional

import pytest

from flextrace.core.part_tasks import PartTaskState, PartTaskTracker, merge_close_status
from flextrace.core.schemas import TraceStatus


class FakeHandlers:
    """Records start/end calls; start can be held open with an event."""

    def __init__(self, task_id: Optional[str] = "task-1") -> None:
        self.task_id = task_id
        self.gate: Optional[asyncio.Event] = None
        self.starts: list[tuple[str, str, Optional[float]]] = []
        self.ends: list[tuple[str, str, TraceStatus, Optional[float]]] = []

    async def start(self, session_id: str, name: str, attrs: dict[str, Any], start_ts: Optional[float]) -> Optional[str]:
        self.starts.append((session_id, name, start_ts))
        if self.gate is not None:
            await self.gate.wait()
        return self.task_id

    async def end(
        self,
        session_id: str,
        task_id: str,
        status: TraceStatus,
        attrs: dict[str, Any],
        end_ts: Optional[float],
    ) -> None:
        self.ends.append((session_id, task_id, status, end_ts))


@pytest.fixture
def handlers() -> FakeHandlers:
    return FakeHandlers()


@pytest.fixture
def tracker(handlers: FakeHandlers) -> PartTaskTracker:
    return PartTaskTracker(handlers.start, handlers.end)


class TestMergeCloseStatus:
    """Tests for merge_close_status()."""

    @pytest.mark.unit
    def test_severity_order(self) -> None:
        assert merge_close_status(None, TraceStatus.OK) == TraceStatus.OK
        assert merge_close_status(TraceStatus.OK, TraceStatus.UNKNOWN) == TraceStatus.UNKNOWN
        assert merge_close_status(TraceStatus.ERROR, TraceStatus.OK) == TraceStatus.ERROR
        assert merge_close_status(TraceStatus.UNKNOWN, TraceStatus.ERROR) == TraceStatus.ERROR


class TestPartTaskTracker:
    """Tests for PartTaskTracker."""

    @pytest.mark.asyncio
    async def test_start_then_end(self, tracker: PartTaskTracker, handlers: FakeHandlers) -> None:
        await tracker.start("tool:call_1", "s1", "activity:tool:grep", {}, 100)
        assert tracker.get("tool:call_1").state == PartTaskState.RUNNING

        await tracker.end("tool:call_1", TraceStatus.OK, 250)

        assert handlers.starts == [("s1", "activity:tool:grep", 100)]
        assert handlers.ends == [("s1", "task-1", TraceStatus.OK, 250)]
        assert "tool:call_1" not in tracker

    @pytest.mark.asyncio
    async def test_end_while_start_in_flight(self, tracker: PartTaskTracker, handlers: FakeHandlers) -> None:
        handlers.gate = asyncio.Event()
        pending = asyncio.create_task(tracker.start("reasoning:p1", "s1", "reasoning", {}, 10))
        await asyncio.sleep(0)
        assert tracker.get("reasoning:p1").state == PartTaskState.PENDING

        await tracker.end("reasoning:p1", TraceStatus.ERROR, 40)
        assert tracker.get("reasoning:p1").state == PartTaskState.ENDING
        assert handlers.ends == []

        handlers.gate.set()
        await pending

        assert handlers.ends == [("s1", "task-1", TraceStatus.ERROR, 40)]
        assert len(tracker) == 0

    @pytest.mark.asyncio
    async def test_buffered_ends_merge_by_severity(self, tracker: PartTaskTracker, handlers: FakeHandlers) -> None:
        handlers.gate = asyncio.Event()
        pending = asyncio.create_task(tracker.start("tool:c", "s1", "x", {}, 0))
        await asyncio.sleep(0)

        await tracker.end("tool:c", TraceStatus.OK, 5)
        await tracker.end("tool:c", TraceStatus.ERROR, 7)
        await tracker.end("tool:c", TraceStatus.OK, 9)

        handlers.gate.set()
        await pending

        assert handlers.ends == [("s1", "task-1", TraceStatus.ERROR, 9)]

    @pytest.mark.asyncio
    async def test_duplicate_start_ignored(self, tracker: PartTaskTracker, handlers: FakeHandlers) -> None:
        await tracker.start("tool:c", "s1", "x", {})
        await tracker.start("tool:c", "s1", "x", {})

        assert len(handlers.starts) == 1

    @pytest.mark.asyncio
    async def test_start_without_task_id_is_discarded(self, handlers: FakeHandlers) -> None:
        handlers.task_id = None
        tracker = PartTaskTracker(handlers.start, handlers.end)

        await tracker.start("tool:c", "s1", "x", {})
        await tracker.end("tool:c", TraceStatus.OK)

        assert "tool:c" not in tracker
        assert handlers.ends == []

    @pytest.mark.asyncio
    async def test_end_of_unknown_key_is_ignored(self, tracker: PartTaskTracker, handlers: FakeHandlers) -> None:
        await tracker.end("tool:nope", TraceStatus.OK)
        assert handlers.ends == []

    @pytest.mark.asyncio
    async def test_close_session_only_touches_that_session(self, tracker: PartTaskTracker, handlers: FakeHandlers) -> None:
        await tracker.start("tool:a", "s1", "x", {})
        await tracker.start("tool:b", "s2", "x", {})

        await tracker.close_session("s1", TraceStatus.ERROR)

        assert [(e[0], e[2]) for e in handlers.ends] == [("s1", TraceStatus.ERROR)]
        assert tracker.keys_for_session("s2") == ["tool:b"]

    @pytest.mark.asyncio
    async def test_shutdown_closes_leftovers_as_unknown(self, tracker: PartTaskTracker, handlers: FakeHandlers) -> None:
        await tracker.start("tool:a", "s1", "x", {})
        await tracker.start("reasoning:b", "s1", "y", {})

        await tracker.shutdown()

        assert len(tracker) == 0
        assert {e[2] for e in handlers.ends} == {TraceStatus.UNKNOWN}
        assert len(handlers.ends) == 2
