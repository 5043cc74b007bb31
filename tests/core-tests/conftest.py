"""
Pytest configuration for core-tests.

This module contains fixtures for the reconstruction engine tests: a record
factory that builds validated trace records with sensible defaults.
"""
import sys
from pathlib import Path
from typing import Any, Optional

import pytest

# Add project root to path before importing project modules
PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from flextrace.core.schemas import (  # noqa: E402
    CounterRecord,
    SessionRecord,
    TaskEndRecord,
    TaskStartRecord,
    TracepointRecord,
    TraceStatus,
)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "unit: marks tests as unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (touch the filesystem)"
    )


class RecordFactory:
    """Builds records for one default root session."""

    def __init__(self, root: str = "ses_root") -> None:
        self.root = root

    def session(
        self,
        session_id: str,
        ts: float = 0,
        parent: Optional[str] = None,
        label: Optional[str] = None,
        root: Optional[str] = None,
        attrs: Optional[dict[str, Any]] = None,
    ) -> SessionRecord:
        return SessionRecord(
            ts=ts,
            session_id=session_id,
            root_session_id=root or self.root,
            parent_session_id=parent,
            label=label,
            attrs=attrs,
        )

    def start(
        self,
        task_id: str,
        ts: float,
        name: str = "task",
        kind: Optional[str] = "manual",
        session: Optional[str] = None,
        parent: Optional[str] = None,
        attrs: Optional[dict[str, Any]] = None,
        root: Optional[str] = None,
    ) -> TaskStartRecord:
        return TaskStartRecord(
            ts=ts,
            task_id=task_id,
            session_id=session or self.root,
            root_session_id=root or self.root,
            name=name,
            kind=kind,
            parent_task_id=parent,
            attrs=attrs,
        )

    def end(
        self,
        task_id: str,
        ts: float,
        status: TraceStatus = TraceStatus.OK,
        session: Optional[str] = None,
        duration_ms: Optional[float] = None,
        attrs: Optional[dict[str, Any]] = None,
        root: Optional[str] = None,
    ) -> TaskEndRecord:
        return TaskEndRecord(
            ts=ts,
            task_id=task_id,
            session_id=session or self.root,
            root_session_id=root or self.root,
            status=status,
            duration_ms=duration_ms,
            attrs=attrs,
        )

    def span(self, task_id: str, start: float, end: float, **kwargs: Any) -> list:
        status = kwargs.pop("status", TraceStatus.OK)
        session = kwargs.get("session")
        return [
            self.start(task_id, start, **kwargs),
            self.end(task_id, end, status=status, session=session),
        ]

    def tracepoint(self, tp_id: str, ts: float, name: str = "event", session: Optional[str] = None) -> TracepointRecord:
        return TracepointRecord(
            ts=ts,
            tp_id=tp_id,
            session_id=session or self.root,
            root_session_id=self.root,
            name=name,
        )

    def counter(self, name: str, value: float, ts: float = 0) -> CounterRecord:
        return CounterRecord(ts=ts, session_id=self.root, root_session_id=self.root, name=name, value=value)


@pytest.fixture
def records() -> RecordFactory:
    """Record factory rooted at ses_root."""
    return RecordFactory()
