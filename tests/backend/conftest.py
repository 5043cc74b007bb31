"""
Pytest configuration and fixtures for backend tests.

Provides fixtures for:
- Sample NDJSON traces (single file and a sharded trace root)
- FastAPI test client over a sample trace
- Capture configuration writing into a temporary directory
"""
import json
import os
import sys
from pathlib import Path
from typing import Any, Callable, Generator

import pytest
from fastapi.testclient import TestClient

# Add project root to path before importing project modules
PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from flextrace.api.main import create_app  # noqa: E402
from flextrace.config import CaptureConfig, ViewerConfig  # noqa: E402
from flextrace.core.schemas import (  # noqa: E402
    CaptureEndRecord,
    CaptureStartRecord,
    CounterRecord,
    MarkerRecord,
    SessionRecord,
    TaskEndRecord,
    TaskStartRecord,
    TraceRecordBase,
    TracepointRecord,
    TraceStatus,
)

ROOT = "ses_parent"
CHILD = "ses_child"

WriteNdjson = Callable[[Path, list[Any]], Path]


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


def _scoped(record_type: str, ts: float, session: str = ROOT, **fields: Any) -> dict[str, Any]:
    return {"type": record_type, "ts": ts, "sessionId": session, "rootSessionId": ROOT, **fields}


def sample_records() -> list[dict[str, Any]]:
    """A parent session that dispatches a child session, plus one running task."""
    return [
        {
            "type": "capture_start", "ts": 900, "captureId": "cap-1",
            "attrs": {"rootDir": "/traces", "maxProjectBytes": 2048, "captureUserMessages": True},
        },
        _scoped("session", 900, label="Parent"),
        _scoped("session", 950, session=CHILD, parentSessionId=ROOT, label="Child"),
        _scoped("task_start", 1000, taskId="p_run", name="agent_run:build", kind="manual"),
        _scoped(
            "task_start", 1100, taskId="p_task", name="activity:tool:task", kind="manual",
            parentTaskId="p_run", attrs={"activity": "tool", "tool": "task"},
        ),
        _scoped("task_start", 1200, session=CHILD, taskId="c_run", name="agent_run:explore", kind="manual"),
        _scoped("task_end", 1800, session=CHILD, taskId="c_run", status="ok"),
        _scoped("task_end", 1900, taskId="p_task", status="ok"),
        _scoped("tracepoint", 1950, tpId="tp-1", name="checkpoint", level="info"),
        _scoped("counter", 1960, name="tokens", value=42),
        _scoped("task_end", 2000, taskId="p_run", status="error"),
        _scoped("task_start", 2100, taskId="pending", name="reasoning", kind="manual"),
    ]


def _write(path: Path, records: list[Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def write_ndjson() -> WriteNdjson:
    """Write dicts (or raw strings) as NDJSON lines to a path."""
    return _write


@pytest.fixture
def trace_file(tmp_path: Path) -> Path:
    """Single trace file with the sample records and one malformed line."""
    return _write(tmp_path / "trace.ndjson", [*sample_records(), "{not json"])


@pytest.fixture
def trace_root(tmp_path: Path) -> Path:
    """Trace root with two root-session files in one project."""
    root = tmp_path / "traces"
    older = _write(root / "proj" / f"{ROOT}.ndjson", sample_records())
    newer = _write(
        root / "proj" / "ses_other.ndjson",
        [{"type": "marker", "ts": 5000, "sessionId": "ses_other", "rootSessionId": "ses_other", "label": "hi"}],
    )
    os.utime(older, (1_000, 1_000))
    os.utime(newer, (2_000, 2_000))
    return root


@pytest.fixture
def every_record_type() -> list[TraceRecordBase]:
    """One record of each type, with attrs and an unknown key, rooted at ROOT."""
    scoped = {"session_id": ROOT, "root_session_id": ROOT}
    return [
        CaptureStartRecord(ts=1, capture_id="cap-1", attrs={"rootDir": "/traces", "maxProjectBytes": 0}),
        SessionRecord(ts=2, label="Parent", attrs={"sessionTitle": "Parent"}, **scoped),
        SessionRecord(ts=3, session_id=CHILD, root_session_id=ROOT, parent_session_id=ROOT, label="Child"),
        TaskStartRecord(
            ts=10, task_id="t1", name="activity:tool:bash", kind="tool", parent_task_id="t0",
            attrs={"tool": "bash", "inputPreview": "{\"command\": \"ls\"}"}, **scoped,
        ),
        TaskEndRecord(
            ts=25.5, task_id="t1", status=TraceStatus.ERROR, duration_ms=15.5, tokens_in=120, tokens_out=8,
            attrs={"error": {"name": "OSError", "message": "nope"}}, **scoped,
        ),
        TracepointRecord(
            ts=30, tp_id="tp-1", name="checkpoint", level="warn", parent_task_id="t1",
            links=[{"taskId": "t1"}, {"sessionId": CHILD}], attrs={"step": 2}, **scoped,
        ),
        CounterRecord(ts=31, name="tokens", value=0.25, **scoped),
        MarkerRecord(ts=32, label="session.completed", hostVersion="1.4.2", **scoped),
        CaptureEndRecord(ts=40, capture_id="cap-1"),
    ]


@pytest.fixture
def capture_config(tmp_path: Path) -> CaptureConfig:
    """Sharded capture configuration rooted in a temporary directory."""
    return CaptureConfig(root_dir=tmp_path / "traces", project_id="proj")


@pytest.fixture
def client(trace_file: Path) -> Generator[TestClient, None, None]:
    """
    FastAPI test client over the sample trace file.

    Yields:
        TestClient for making requests.
    """
    app = create_app(ViewerConfig(trace_path=str(trace_file)))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def root_client(trace_root: Path) -> Generator[TestClient, None, None]:
    """FastAPI test client discovering files under the sample trace root."""
    app = create_app(ViewerConfig(root_dir=str(trace_root)))
    with TestClient(app) as test_client:
        yield test_client
