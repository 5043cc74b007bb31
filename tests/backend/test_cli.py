"""
Tests for the tracectl command-line entry point.

Covers:
- analyze (tables, --json, --summary)
- export in every format and invalid formats
- watch --once
- Error exit codes
"""
import csv
import io
import json
from pathlib import Path

import pytest

from flextrace.core import cli


@pytest.fixture(autouse=True)
def no_file_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep test runs from reconfiguring the root logger."""
    monkeypatch.setattr(cli, "setup_cli_logging", lambda log_level: None)
    monkeypatch.delenv("TRACE_FILE", raising=False)
    monkeypatch.delenv("FLEXTRACE_ROOT", raising=False)


class TestAnalyzeCommand:
    """tracectl analyze."""

    @pytest.mark.integration
    def test_json_summary(self, trace_file: Path, capsys: pytest.CaptureFixture) -> None:
        assert cli.main(["analyze", str(trace_file), "--json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["totalRecords"] == 12
        assert data["totalTasks"] == 3
        assert data["errorTasks"] == 1
        assert data["totalSessions"] == 2

    @pytest.mark.integration
    def test_tables_and_summary_file(self, trace_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        summary_path = tmp_path / "summary.json"

        assert cli.main(["analyze", str(trace_file), "--summary", str(summary_path)]) == 0

        out = capsys.readouterr().out
        assert "Trace summary" in out
        assert "By agent / activity" in out
        assert "1 malformed lines skipped" in out
        assert json.loads(summary_path.read_text(encoding="utf-8"))["totalTasks"] == 3

    @pytest.mark.integration
    def test_missing_file_fails(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        assert cli.main(["analyze", str(tmp_path / "missing.ndjson")]) == 1

        assert "tracectl failed" in capsys.readouterr().err


class TestExportCommand:
    """tracectl export."""

    @pytest.mark.integration
    def test_chrome_trace(self, trace_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        out = tmp_path / "trace.json"

        assert cli.main(["export", str(trace_file), "--out", str(out), "--format", "chrome-trace"]) == 0

        events = json.loads(out.read_text(encoding="utf-8"))["traceEvents"]
        assert len(events) == 3
        assert "exported 12 records" in capsys.readouterr().out

    @pytest.mark.integration
    def test_csv(self, trace_file: Path, tmp_path: Path) -> None:
        out = tmp_path / "trace.csv"

        assert cli.main(["export", str(trace_file), "-o", str(out), "--format", "CSV"]) == 0

        rows = list(csv.reader(io.StringIO(out.read_text(encoding="utf-8"))))
        assert rows[0][:3] == ["type", "ts", "sessionId"]
        assert len(rows) == 13

    @pytest.mark.integration
    def test_default_json(self, trace_file: Path, tmp_path: Path) -> None:
        out = tmp_path / "trace.json"

        assert cli.main(["export", str(trace_file), "--out", str(out)]) == 0

        assert len(json.loads(out.read_text(encoding="utf-8"))) == 12

    @pytest.mark.integration
    def test_invalid_format(self, trace_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        out = tmp_path / "trace.xml"

        assert cli.main(["export", str(trace_file), "--out", str(out), "--format", "xml"]) == 1

        assert "Invalid format" in capsys.readouterr().err
        assert not out.exists()


class TestWatchCommand:
    """tracectl watch."""

    @pytest.mark.integration
    def test_once_prints_frame(self, trace_file: Path, capsys: pytest.CaptureFixture) -> None:
        assert cli.main(["watch", str(trace_file), "--once"]) == 0

        out = capsys.readouterr().out
        assert str(trace_file.resolve()) in out
        assert "Active now (1)" in out
        assert "Agent activity totals" in out

    @pytest.mark.integration
    def test_once_with_no_source_fails(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        (tmp_path / "empty").mkdir()

        assert cli.main(["watch", "--root", str(tmp_path / "empty"), "--once"]) == 1

        assert "Poll failed" in capsys.readouterr().out

    @pytest.mark.integration
    def test_missing_config_file(self, trace_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        args = ["watch", str(trace_file), "--once", "--config", str(tmp_path / "nope.yaml")]

        assert cli.main(args) == 1

        assert "Configuration Error" in capsys.readouterr().err


class TestParser:
    """Argument parsing."""

    @pytest.mark.unit
    def test_command_is_required(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    @pytest.mark.unit
    def test_serve_arguments(self) -> None:
        args = cli.build_parser().parse_args(["serve", "--root", "/r", "-p", "proj", "--port", "8001"])

        assert args.trace is None
        assert (args.root, args.project, args.port, args.limit) == ("/r", "proj", 8001, None)
