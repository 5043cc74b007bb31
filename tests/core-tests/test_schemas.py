"""
Tests for the trace record models.

Covers:
- camelCase wire keys and snake_case attributes
- Tagged-union parsing on `type`
- Unknown keys kept on round trip
- Optional fields never reject a record; required fields do
"""
import json

import pytest
from pydantic import ValidationError

from flextrace.core.schemas import (
    CaptureStartRecord,
    MarkerRecord,
    SessionRecord,
    TaskEndRecord,
    TaskStartRecord,
    TraceStatus,
    TracepointRecord,
    dump_record,
    parse_record,
)


class TestParseRecord:
    """Tests for parse_record()."""

    @pytest.mark.unit
    def test_parses_task_start_from_json_line(self) -> None:
        line = json.dumps({
            "type": "task_start",
            "ts": 1000,
            "taskId": "t1",
            "sessionId": "ses_a",
            "rootSessionId": "ses_a",
            "name": "bash",
            "kind": "tool",
            "parentTaskId": "t0",
        })

        record = parse_record(line)

        assert isinstance(record, TaskStartRecord)
        assert record.task_id == "t1"
        assert record.root_session_id == "ses_a"
        assert record.parent_task_id == "t0"
        assert record.kind == "tool"

    @pytest.mark.unit
    def test_dispatches_on_type(self) -> None:
        record = parse_record({"type": "capture_start", "ts": 1, "captureId": "c1"})
        assert isinstance(record, CaptureStartRecord)

        record = parse_record({
            "type": "marker", "ts": 2, "sessionId": "s", "rootSessionId": "s", "label": "done",
        })
        assert isinstance(record, MarkerRecord)

    @pytest.mark.unit
    def test_session_upsert_defaults_op(self) -> None:
        record = parse_record({"type": "session", "ts": 1, "sessionId": "s", "rootSessionId": "s"})
        assert isinstance(record, SessionRecord)
        assert record.op == "upsert"

    @pytest.mark.unit
    def test_end_status_is_kept_as_written(self) -> None:
        record = parse_record({
            "type": "task_end", "ts": 5, "taskId": "t", "sessionId": "s",
            "rootSessionId": "s", "status": "error", "durationMs": 4.5,
        })
        assert isinstance(record, TaskEndRecord)
        assert record.status == TraceStatus.ERROR
        assert record.duration_ms == 4.5

        record = parse_record({
            "type": "task_end", "ts": 5, "taskId": "t", "sessionId": "s", "rootSessionId": "s", "status": "done",
        })
        assert record.status == "done"

    @pytest.mark.unit
    def test_accepts_any_tracepoint_level(self) -> None:
        record = parse_record({
            "type": "tracepoint", "ts": 1, "tpId": "tp", "name": "x",
            "sessionId": "s", "rootSessionId": "s", "level": "debug",
        })

        assert isinstance(record, TracepointRecord)
        assert record.level == "debug"

    @pytest.mark.unit
    def test_timestamp_is_optional(self) -> None:
        record = parse_record({"type": "task_start", "taskId": "t", "name": "x", "sessionId": "s", "rootSessionId": "s"})

        assert record.ts is None
        assert "ts" not in dump_record(record)

    @pytest.mark.unit
    def test_mistyped_optional_fields_read_as_unset(self) -> None:
        record = parse_record({
            "type": "tracepoint", "ts": "soon", "tpId": "tp", "name": "x", "sessionId": "s",
            "rootSessionId": "s", "attrs": ["a"], "parentTaskId": 7, "level": 3,
            "links": [{"taskId": "t1"}, "t2"],
        })

        assert record.ts is None
        assert record.attrs is None
        assert record.parent_task_id is None
        assert record.level is None
        assert record.links == [{"taskId": "t1"}]

    @pytest.mark.unit
    def test_capture_id_is_optional(self) -> None:
        assert parse_record({"type": "capture_end", "ts": 1}).capture_id is None

    @pytest.mark.unit
    @pytest.mark.parametrize("payload", [
        {"type": "nope", "ts": 1},
        {"ts": 1, "sessionId": "s", "rootSessionId": "s", "label": "x"},
        {"type": "marker", "ts": 1, "sessionId": "", "rootSessionId": "s", "label": "x"},
        {"type": "marker", "ts": 1, "sessionId": "s", "label": "x"},
        {"type": "session", "ts": 1, "sessionId": "s", "rootSessionId": "s", "op": "delete"},
        {"type": "task_start", "ts": 1, "taskId": "t", "sessionId": "s", "rootSessionId": "s"},
        {"type": "task_start", "ts": 1, "taskId": 5, "name": "x", "sessionId": "s", "rootSessionId": "s"},
        {"type": "task_end", "ts": 1, "taskId": "t", "sessionId": "s", "rootSessionId": "s"},
        {"type": "tracepoint", "ts": 1, "name": "x", "sessionId": "s", "rootSessionId": "s"},
        {"type": "counter", "ts": 1, "name": "x", "value": True, "sessionId": "s", "rootSessionId": "s"},
        {"type": "counter", "ts": 1, "name": "x", "value": "3", "sessionId": "s", "rootSessionId": "s"},
    ])
    def test_rejects_invalid_records(self, payload: dict) -> None:
        with pytest.raises(ValidationError):
            parse_record(payload)

    @pytest.mark.unit
    def test_rejects_non_object_json(self) -> None:
        with pytest.raises(ValidationError):
            parse_record("[1, 2]")
        with pytest.raises(ValidationError):
            parse_record("not json")


class TestDumpRecord:
    """Tests for dump_record()."""

    @pytest.mark.unit
    def test_uses_camel_case_and_drops_none(self) -> None:
        record = TaskStartRecord(
            ts=1, task_id="t1", session_id="s", root_session_id="r", name="x",
        )

        data = dump_record(record)

        assert data == {
            "type": "task_start",
            "ts": 1,
            "taskId": "t1",
            "sessionId": "s",
            "rootSessionId": "r",
            "name": "x",
        }

    @pytest.mark.unit
    def test_keeps_unknown_keys(self) -> None:
        record = parse_record({
            "type": "marker", "ts": 1, "sessionId": "s", "rootSessionId": "s",
            "label": "x", "hostVersion": "1.2",
        })

        assert dump_record(record)["hostVersion"] == "1.2"

    @pytest.mark.unit
    def test_mapping_input_drops_none(self) -> None:
        assert dump_record({"type": "marker", "attrs": None, "ts": 1}) == {"type": "marker", "ts": 1}
