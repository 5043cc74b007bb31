"""
Centralized constants for FlexTrace.

All magic numbers, strings, and configuration values are defined here.
This ensures consistency across modules and makes maintenance easier.

Usage:
    from .constants import (
        AnsiColors,
        CAPTURE_FILE_NAME,
        DEFAULT_MAX_PROJECT_BYTES,
        LOG_FORMAT_FILE,
        UNKNOWN_AGENT,
    )
"""
from enum import StrEnum


# =============================================================================
# Logging Constants
# =============================================================================

# Log format for file-based logging
LOG_FORMAT_FILE: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Log format for colored console (using colorlog)
LOG_FORMAT_COLORED: str = (
    "%(log_color)s%(levelname)-8s%(reset)s %(cyan)s%(name)s%(reset)s: %(message)s"
)

# Rotating file handler settings
LOG_MAX_BYTES: int = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT: int = 5

# Log file names
LOG_FILE_CLI: str = "tracectl.log"
LOG_FILE_VIEWER: str = "viewer.log"

# Loggers the viewer attaches its handlers to
VIEWER_LOGGERS: tuple[str, ...] = (
    "flextrace",
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
)

COLORLOG_COLORS: dict[str, str] = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


# =============================================================================
# ANSI Terminal Colors
# =============================================================================

class AnsiColors(StrEnum):
    """ANSI escape codes used by the tracectl terminal output."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"
    BRIGHT_BLACK = "\033[90m"

    # Semantic aliases
    SUCCESS = "\033[32m"
    ERROR = "\033[31m"
    WARNING = "\033[33m"
    INFO = "\033[36m"
    GRAY = "\033[90m"


# =============================================================================
# Record Layout
# =============================================================================

# Sharded log layout: <root>/<project>/<rootSessionId>.ndjson
TRACE_FILE_SUFFIX: str = ".ndjson"
CAPTURE_FILE_NAME: str = "_capture.ndjson"
DEFAULT_TRACE_FILE_NAME: str = "trace.ndjson"
DEFAULT_TRACE_ROOT: str = "~/.flextrace"

# Retention budget per project directory (1 GiB). 0 disables enforcement.
DEFAULT_MAX_PROJECT_BYTES: int = 1024 ** 3

# Capture record types carry no session routing key
CAPTURE_RECORD_TYPES: frozenset[str] = frozenset({"capture_start", "capture_end"})


# =============================================================================
# Capture Defaults
# =============================================================================

PLUGIN_NAME: str = "flextrace"
PREVIEW_MAX_CHARS: int = 800
DEFAULT_USER_MESSAGE_PREVIEW_MAX: int = 280
UNKNOWN_SESSION: str = "unknown-session"
UNKNOWN_TOOL: str = "unknown-tool"
UNKNOWN_TASK: str = "unknown-task"

# Tool names counted as coding activity when surfaced as message parts
CODING_TOOLS: frozenset[str] = frozenset({"bash", "edit", "write", "multi_edit", "patch"})


# =============================================================================
# Reconstruction Constants
# =============================================================================

UNKNOWN_AGENT: str = "unknown-agent"
UNKNOWN_ACTIVITY: str = "unknown-activity"
UNKNOWN_NAME: str = "unknown"
AGENT_RUN_PREFIX: str = "agent_run:"
AGENT_PREFIX: str = "agent:"
ACTIVITY_PREFIX: str = "activity:"
CALL_ID_PREFIX: str = "call_"
INTENT_MAX_CHARS: int = 140
SESSION_ID_SHORT_LENGTH: int = 14


class Activity(StrEnum):
    """Activity categories assigned to reconstructed tasks."""
    TOOL = "tool"
    CODING = "coding"
    REASONING = "reasoning"
    AGENT_RUN = "agent_run"


# =============================================================================
# Viewer / Polling Constants
# =============================================================================

DEFAULT_VIEWER_HOST: str = "127.0.0.1"
DEFAULT_VIEWER_PORT: int = 7399
DEFAULT_STALE_MS: int = 15_000
DEFAULT_SOURCE_LIMIT: int = 50
SOURCE_ACTIVE_WINDOW_MS: int = 60 * 60 * 1000
DEFAULT_POLL_INTERVAL: float = 2.0
ALL_PROJECTS: str = "all"
TOP_SLOW_TASKS: int = 10


# =============================================================================
# Terminal Output Constants
# =============================================================================

MIN_TERMINAL_WIDTH: int = 60
MAX_TERMINAL_WIDTH: int = 160
DEFAULT_TERMINAL_WIDTH: int = 100

# Column widths for the tracectl tables
AGENT_COLUMN_WIDTH: int = 18
ACTIVITY_COLUMN_WIDTH: int = 16
DURATION_COLUMN_WIDTH: int = 10
NAME_PREVIEW_LENGTH: int = 48
