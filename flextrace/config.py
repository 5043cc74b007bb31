"""
Global configuration for FlexTrace.

This module defines directory paths, the capture/viewer configuration models
and the TraceConfigLoader class for loading configuration from flextrace.yaml.

Precedence (lowest to highest): model defaults, flextrace.yaml, environment
variables, CLI overrides.

Usage:
    from flextrace.config import LOGS_DIR, CONFIG_DIR
    from flextrace.config import TraceConfigLoader, ConfigNotFoundError

    loader = TraceConfigLoader()
    capture = loader.get_capture_config()

    # With CLI overrides
    loader.apply_cli_overrides(port=8080, root_dir="/tmp/traces")
    viewer = loader.get_viewer_config()
"""
import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .core.constants import (
    ALL_PROJECTS,
    DEFAULT_MAX_PROJECT_BYTES,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SOURCE_LIMIT,
    DEFAULT_STALE_MS,
    DEFAULT_TRACE_ROOT,
    DEFAULT_USER_MESSAGE_PREVIEW_MAX,
    DEFAULT_VIEWER_HOST,
    DEFAULT_VIEWER_PORT,
)

logger = logging.getLogger(__name__)


class ConfigNotFoundError(Exception):
    """Raised when a required configuration file is not found."""
    pass


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


# FLEXTRACE_DIR holds logs/ and config/ for the tooling itself (not the traces).
# Allow override via FLEXTRACE_HOME so containers can mount them elsewhere.
_home_override = os.environ.get("FLEXTRACE_HOME")
if _home_override:
    FLEXTRACE_DIR: Path = Path(_home_override).expanduser().resolve()
else:
    # config.py is at <project>/flextrace/config.py, so parent.parent = <project>/
    FLEXTRACE_DIR = Path(__file__).parent.parent.resolve()

# Standard directories
LOGS_DIR: Path = FLEXTRACE_DIR / "logs"
CONFIG_DIR: Path = FLEXTRACE_DIR / "config"

# Configuration files
TRACE_CONFIG_FILE: Path = CONFIG_DIR / "flextrace.yaml"
ENV_FILE: Path = FLEXTRACE_DIR / ".env"


def default_trace_root() -> Path:
    """Trace root directory: FLEXTRACE_ROOT or ~/.flextrace."""
    return Path(os.environ.get("FLEXTRACE_ROOT") or DEFAULT_TRACE_ROOT).expanduser().resolve()


def default_project_id() -> str:
    """Project id: FLEXTRACE_PROJECT_ID or the basename of the working directory."""
    return os.environ.get("FLEXTRACE_PROJECT_ID") or Path.cwd().name


# =============================================================================
# Configuration Models
# =============================================================================

class CaptureConfig(BaseModel):
    """Settings for a capture session (the write side)."""
    enabled: bool = True
    root_dir: Path = Field(default_factory=default_trace_root)
    project_id: str = Field(default_factory=default_project_id)
    # Single-file mode when set; sharded per root session otherwise
    out_path: Optional[Path] = None
    include_counter_tool: bool = True
    include_task_tool: bool = True
    capture_user_messages: bool = True
    user_message_preview_max: int = DEFAULT_USER_MESSAGE_PREVIEW_MAX
    max_project_bytes: int = DEFAULT_MAX_PROJECT_BYTES
    attrs: dict[str, Any] = Field(default_factory=dict)

    @field_validator("max_project_bytes", "user_message_preview_max")
    @classmethod
    def _clamp_non_negative(cls, value: int) -> int:
        return max(0, value)

    @field_validator("root_dir", "out_path")
    @classmethod
    def _expand_path(cls, value: Optional[Path]) -> Optional[Path]:
        if value is None:
            return None
        return Path(value).expanduser().resolve()


class ViewerConfig(BaseModel):
    """Settings for the read side (tracectl watch and the viewer API)."""
    host: str = DEFAULT_VIEWER_HOST
    port: int = DEFAULT_VIEWER_PORT
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    trace_path: Optional[str] = None
    root_dir: Optional[str] = None
    project: str = ALL_PROJECTS
    limit: int = Field(default=DEFAULT_SOURCE_LIMIT, ge=1)
    stale_ms: int = Field(default=DEFAULT_STALE_MS, ge=0)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)


# Environment variables mapped onto (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "FLEXTRACE_ROOT": ("capture", "root_dir"),
    "FLEXTRACE_PROJECT_ID": ("capture", "project_id"),
    "FLEXTRACE_MAX_PROJECT_BYTES": ("capture", "max_project_bytes"),
    "TRACE_FILE": ("viewer", "trace_path"),
    "TRACE_STALE_MS": ("viewer", "stale_ms"),
}


class TraceConfigLoader:
    """
    Loads FlexTrace configuration from flextrace.yaml.

    The file is optional when the default location is used; an explicitly
    passed path must exist. The YAML has two optional sections:

        capture:
          root_dir: ~/.flextrace
          max_project_bytes: 1073741824
        viewer:
          port: 7399
          stale_ms: 15000

    Usage:
        loader = TraceConfigLoader()
        loader.apply_cli_overrides(port=8080)
        viewer = loader.get_viewer_config()
    """

    SECTIONS = ("capture", "viewer")

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """
        Initialize the configuration loader.

        Args:
            config_path: Path to flextrace.yaml. Defaults to CONFIG_DIR/flextrace.yaml.
        """
        self._explicit_path = config_path is not None
        self._config_path = Path(config_path) if config_path else TRACE_CONFIG_FILE
        self._sections: dict[str, dict[str, Any]] = {name: {} for name in self.SECTIONS}
        self._cli_overrides: dict[str, Any] = {}
        self._loaded = False

    def load(self) -> None:
        """
        Load configuration from YAML and apply environment overrides.

        Raises:
            ConfigNotFoundError: If an explicitly requested config file is missing.
            ConfigValidationError: If the file cannot be parsed.
        """
        self._load_yaml()
        self._apply_env_overrides()
        self._loaded = True
        logger.info(f"Configuration loaded (file: {self._config_path})")

    def _load_yaml(self) -> None:
        """Load sections from the YAML file if present."""
        if not self._config_path.exists():
            if self._explicit_path:
                raise ConfigNotFoundError(
                    f"FlexTrace configuration not found: {self._config_path}\n"
                    f"See config/flextrace.yaml.template for reference."
                )
            logger.debug(f"No configuration file at {self._config_path}, using defaults")
            return

        try:
            with self._config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigValidationError(
                f"Failed to parse configuration {self._config_path}: {e}"
            ) from e

        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigValidationError(
                f"Configuration root must be a mapping: {self._config_path}"
            )

        for name in self.SECTIONS:
            section = data.get(name) or {}
            if not isinstance(section, dict):
                raise ConfigValidationError(
                    f"Section '{name}' must be a mapping in {self._config_path}"
                )
            self._sections[name].update(section)

    def _apply_env_overrides(self) -> None:
        """Apply environment variables on top of the YAML values."""
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                self._sections[section][key] = value
                logger.debug(f"Env override: {env_name} -> {section}.{key}")

    def apply_cli_overrides(self, **kwargs: Any) -> None:
        """
        Apply CLI argument overrides. None values are ignored.

        Keys are matched against both sections, so `root_dir` overrides
        capture.root_dir and viewer.root_dir alike.

        Args:
            **kwargs: Configuration values to override.
        """
        for key, value in kwargs.items():
            if value is not None:
                self._cli_overrides[key] = value
                logger.debug(f"CLI override: {key}={value}")

    def _section(self, name: str, model: type[BaseModel]) -> dict[str, Any]:
        if not self._loaded:
            self.load()
        merged = dict(self._sections[name])
        for key, value in self._cli_overrides.items():
            if key in model.model_fields:
                merged[key] = value
        return merged

    def get_capture_config(self) -> CaptureConfig:
        """
        Build the validated capture configuration.

        Raises:
            ConfigValidationError: If a value has the wrong type.
        """
        try:
            return CaptureConfig(**self._section("capture", CaptureConfig))
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid capture configuration: {e}") from e

    def get_viewer_config(self) -> ViewerConfig:
        """
        Build the validated viewer configuration.

        Raises:
            ConfigValidationError: If a value has the wrong type.
        """
        try:
            return ViewerConfig(**self._section("viewer", ViewerConfig))
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid viewer configuration: {e}") from e

    @property
    def config_path(self) -> Path:
        """Return the path to the config file."""
        return self._config_path
