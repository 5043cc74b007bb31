"""
Terminal output for tracectl.

Provides the status lines, tables and summary blocks printed by the
analyze and watch commands. Plain ANSI colors, no third-party UI layer.

Usage:
    from .output import format_duration, print_summary, print_timeline_frame

    print_summary(analyze_trace(records))
"""
import shutil
import sys
from typing import Optional, Sequence

from .constants import (
    ACTIVITY_COLUMN_WIDTH,
    AGENT_COLUMN_WIDTH,
    DEFAULT_TERMINAL_WIDTH,
    DURATION_COLUMN_WIDTH,
    MAX_TERMINAL_WIDTH,
    MIN_TERMINAL_WIDTH,
    NAME_PREVIEW_LENGTH,
    AnsiColors,
)
from .schemas import AgentActivityStat, TaskView, TimelineSnapshot, TraceSummary


# =============================================================================
# Terminal Utilities
# =============================================================================

def get_terminal_width() -> int:
    """
    Get terminal width with sensible bounds.

    Returns:
        Terminal width clamped between MIN_TERMINAL_WIDTH and MAX_TERMINAL_WIDTH.
    """
    try:
        width = shutil.get_terminal_size().columns
        return max(MIN_TERMINAL_WIDTH, min(width, MAX_TERMINAL_WIDTH))
    except (OSError, ValueError):
        return DEFAULT_TERMINAL_WIDTH


def is_tty() -> bool:
    return sys.stdout.isatty()


def truncate_text(text: str, max_len: int = NAME_PREVIEW_LENGTH, suffix: str = "...") -> str:
    """
    Truncate text with ellipsis, collapsing newlines.

    Args:
        text: Text to truncate.
        max_len: Maximum length including the suffix.
        suffix: Suffix to append when truncating.

    Returns:
        Truncated text.
    """
    text = text.replace("\n", " ").replace("\r", "").strip()
    if len(text) <= max_len:
        return text
    return text[:max_len - len(suffix)] + suffix


def format_duration(duration_ms: float) -> str:
    """
    Format duration in human-readable form.

    Args:
        duration_ms: Duration in milliseconds.

    Returns:
        Human-readable duration string (e.g., "850ms", "1.5s", "2m 30.5s").
    """
    if not duration_ms or duration_ms < 0:
        return "0ms"
    if duration_ms < 1000:
        return f"{int(round(duration_ms))}ms"
    elif duration_ms < 60000:
        return f"{duration_ms / 1000:.1f}s"
    else:
        minutes = int(duration_ms // 60000)
        seconds = (duration_ms % 60000) / 1000
        return f"{minutes}m {seconds:.1f}s"


# =============================================================================
# Status Message Printing
# =============================================================================

def print_status(message: str, status: str = "info") -> None:
    """
    Print a status message with color.

    Args:
        message: Message to print.
        status: Status type (info, success, warning, error, dim).
    """
    colors = {
        "info": AnsiColors.INFO,
        "success": AnsiColors.SUCCESS,
        "warning": AnsiColors.WARNING,
        "error": AnsiColors.ERROR,
        "dim": AnsiColors.GRAY,
    }
    color = colors.get(status, "")
    print(f"{color}{message}{AnsiColors.RESET}")


# =============================================================================
# Tables
# =============================================================================

def print_agent_activity_table(stats: Sequence[AgentActivityStat]) -> None:
    """Print completed-work totals per agent and activity."""
    if not stats:
        print("No completed tasks.")
        return

    print(
        f"{'Agent':<{AGENT_COLUMN_WIDTH}} "
        f"{'Activity':<{ACTIVITY_COLUMN_WIDTH}} "
        f"{'Count':>6} "
        f"{'Total':>{DURATION_COLUMN_WIDTH}} "
        f"{'Avg':>{DURATION_COLUMN_WIDTH}} "
        f"{'Errors':>6}"
    )
    print("-" * (AGENT_COLUMN_WIDTH + ACTIVITY_COLUMN_WIDTH + 2 * DURATION_COLUMN_WIDTH + 17))
    for stat in stats:
        errors = f"{stat.errors:>6}"
        if stat.errors:
            errors = f"{AnsiColors.ERROR}{errors}{AnsiColors.RESET}"
        print(
            f"{truncate_text(stat.agent, AGENT_COLUMN_WIDTH):<{AGENT_COLUMN_WIDTH}} "
            f"{truncate_text(stat.activity, ACTIVITY_COLUMN_WIDTH):<{ACTIVITY_COLUMN_WIDTH}} "
            f"{stat.count:>6} "
            f"{format_duration(stat.total_ms):>{DURATION_COLUMN_WIDTH}} "
            f"{format_duration(stat.avg_ms):>{DURATION_COLUMN_WIDTH}} "
            f"{errors}"
        )


def print_task_table(tasks: Sequence[TaskView], limit: Optional[int] = None) -> None:
    """Print running or completed tasks, one per line."""
    if not tasks:
        print("No tasks.")
        return

    shown = tasks[:limit] if limit else tasks
    name_width = max(20, get_terminal_width() - AGENT_COLUMN_WIDTH - ACTIVITY_COLUMN_WIDTH
                     - DURATION_COLUMN_WIDTH - 3)
    for task in shown:
        doing = task.attrs.get("doing") if task.attrs else None
        label = f"{task.name} ({doing})" if doing else task.name
        status_color = AnsiColors.ERROR if task.status == "error" else ""
        print(
            f"{status_color}"
            f"{truncate_text(task.agent, AGENT_COLUMN_WIDTH):<{AGENT_COLUMN_WIDTH}} "
            f"{truncate_text(task.activity, ACTIVITY_COLUMN_WIDTH):<{ACTIVITY_COLUMN_WIDTH}} "
            f"{format_duration(task.duration_ms):>{DURATION_COLUMN_WIDTH}} "
            f"{truncate_text(label, name_width)}"
            f"{AnsiColors.RESET if status_color else ''}"
        )
    if len(shown) < len(tasks):
        print_status(f"... {len(tasks) - len(shown)} more", "dim")


# =============================================================================
# Summary and Watch Output
# =============================================================================

def print_summary(summary: TraceSummary) -> None:
    """Print the analyze summary in human-readable form."""
    print(f"{AnsiColors.BOLD}Trace summary{AnsiColors.RESET}")
    print(f"  Records:      {summary.total_records}")
    print(f"  Sessions:     {summary.total_sessions}")
    print(f"  Tasks:        {summary.total_tasks} ({summary.error_tasks} errors)")
    print(f"  Tracepoints:  {summary.total_tracepoints}")
    print(f"  Counters:     {summary.total_counters}")
    print(f"  Avg duration: {format_duration(summary.avg_task_duration_ms)}")
    print(f"  p95 duration: {format_duration(summary.p95_task_duration_ms)}")

    if summary.top_slow_tasks:
        print(f"\n{AnsiColors.BOLD}Slowest tasks{AnsiColors.RESET}")
        for stat in summary.top_slow_tasks:
            print(
                f"  {format_duration(stat.avg_duration_ms):>{DURATION_COLUMN_WIDTH}} "
                f"x{stat.count:<4} err {stat.error_rate:>5.0%}  "
                f"{truncate_text(stat.name)}"
            )

    print(f"\n{AnsiColors.BOLD}By agent / activity{AnsiColors.RESET}")
    print_agent_activity_table(summary.by_agent_activity)


def print_timeline_frame(snapshot: TimelineSnapshot, clear: bool = False) -> None:
    """Print one watch frame: freshness line, running tasks, totals."""
    if clear and is_tty():
        print("\033[2J\033[H", end="")

    freshness = "stale" if snapshot.is_stale else "live"
    status = "warning" if snapshot.is_stale else "success"
    print_status(
        f"{snapshot.trace_path}  [{freshness}, lag {format_duration(snapshot.lag_ms)}]  "
        f"{snapshot.total_records} records, {snapshot.malformed_lines} malformed",
        status,
    )

    print(f"\n{AnsiColors.BOLD}Active now ({len(snapshot.active_tasks)}){AnsiColors.RESET}")
    print_task_table(snapshot.active_tasks, limit=20)

    print(f"\n{AnsiColors.BOLD}Agent activity totals{AnsiColors.RESET}")
    print_agent_activity_table(snapshot.by_agent_activity)
    if snapshot.handoffs:
        print_status(f"\n{len(snapshot.handoffs)} handoffs across {len(snapshot.lanes.rows)} sessions", "dim")
