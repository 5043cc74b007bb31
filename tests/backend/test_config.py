"""
Tests for configuration loading.

Covers:
- Defaults when no file exists
- YAML sections, environment overrides and CLI overrides (in that precedence)
- Errors for missing explicit files and invalid values
"""
from pathlib import Path

import pytest

from flextrace.config import (
    CaptureConfig,
    ConfigNotFoundError,
    ConfigValidationError,
    TraceConfigLoader,
)

ENV_NAMES = (
    "FLEXTRACE_ROOT",
    "FLEXTRACE_PROJECT_ID",
    "FLEXTRACE_MAX_PROJECT_BYTES",
    "TRACE_FILE",
    "TRACE_STALE_MS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def _yaml(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "flextrace.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestTraceConfigLoader:
    """Tests for TraceConfigLoader."""

    @pytest.mark.unit
    def test_defaults_without_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("flextrace.config.TRACE_CONFIG_FILE", tmp_path / "missing.yaml")

        loader = TraceConfigLoader()
        viewer = loader.get_viewer_config()

        assert loader.config_path == tmp_path / "missing.yaml"
        assert viewer.port == 7399
        assert viewer.stale_ms == 15000
        assert viewer.project == "all"

    @pytest.mark.unit
    def test_yaml_sections(self, tmp_path: Path) -> None:
        path = _yaml(tmp_path, """
capture:
  root_dir: {root}
  project_id: demo
  max_project_bytes: 4096
  capture_user_messages: false
viewer:
  port: 8123
  stale_ms: 500
  limit: 3
""".format(root=tmp_path / "traces"))

        loader = TraceConfigLoader(path)
        capture = loader.get_capture_config()
        viewer = loader.get_viewer_config()

        assert capture.root_dir == (tmp_path / "traces").resolve()
        assert capture.project_id == "demo"
        assert capture.max_project_bytes == 4096
        assert capture.capture_user_messages is False
        assert (viewer.port, viewer.stale_ms, viewer.limit) == (8123, 500, 3)

    @pytest.mark.unit
    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _yaml(tmp_path, "viewer:\n  stale_ms: 500\ncapture:\n  project_id: demo\n")
        monkeypatch.setenv("TRACE_STALE_MS", "2500")
        monkeypatch.setenv("FLEXTRACE_PROJECT_ID", "from-env")
        monkeypatch.setenv("FLEXTRACE_MAX_PROJECT_BYTES", "10")

        loader = TraceConfigLoader(path)

        assert loader.get_viewer_config().stale_ms == 2500
        capture = loader.get_capture_config()
        assert capture.project_id == "from-env"
        assert capture.max_project_bytes == 10

    @pytest.mark.unit
    def test_cli_overrides_win(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _yaml(tmp_path, "viewer:\n  port: 8000\n")
        monkeypatch.setenv("TRACE_FILE", "/env/trace.ndjson")

        loader = TraceConfigLoader(path)
        loader.apply_cli_overrides(port=9000, trace_path="/cli/trace.ndjson", host=None)
        viewer = loader.get_viewer_config()

        assert viewer.port == 9000
        assert viewer.trace_path == "/cli/trace.ndjson"
        assert viewer.host == "127.0.0.1"

    @pytest.mark.unit
    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigNotFoundError):
            TraceConfigLoader(tmp_path / "nope.yaml").load()

    @pytest.mark.unit
    @pytest.mark.parametrize("text", [
        "- just\n- a list\n",
        "viewer: [1, 2]\n",
        "viewer:\n  port: [\n",
    ])
    def test_malformed_file(self, tmp_path: Path, text: str) -> None:
        with pytest.raises(ConfigValidationError):
            TraceConfigLoader(_yaml(tmp_path, text)).load()

    @pytest.mark.unit
    def test_invalid_values(self, tmp_path: Path) -> None:
        loader = TraceConfigLoader(_yaml(tmp_path, "viewer:\n  port: not-a-port\n  limit: 0\n"))

        with pytest.raises(ConfigValidationError):
            loader.get_viewer_config()

    @pytest.mark.unit
    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        loader = TraceConfigLoader(_yaml(tmp_path, ""))

        assert loader.get_viewer_config().limit == 50


class TestCaptureConfig:
    """Tests for CaptureConfig validation."""

    @pytest.mark.unit
    def test_negative_budgets_clamp_to_zero(self, tmp_path: Path) -> None:
        config = CaptureConfig(root_dir=tmp_path, project_id="p", max_project_bytes=-5, user_message_preview_max=-1)

        assert config.max_project_bytes == 0
        assert config.user_message_preview_max == 0

    @pytest.mark.unit
    def test_paths_are_expanded(self, tmp_path: Path) -> None:
        config = CaptureConfig(root_dir="~/traces", project_id="p", out_path=tmp_path / "x" / ".." / "t.ndjson")

        assert config.root_dir == (Path.home() / "traces").resolve()
        assert config.out_path == (tmp_path / "t.ndjson").resolve()

    @pytest.mark.unit
    def test_project_id_defaults_to_cwd_name(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)

        assert CaptureConfig(root_dir=tmp_path).project_id == tmp_path.name
