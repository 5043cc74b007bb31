"""
Small helpers shared by the capture and reconstruction code.

Covers timestamps and ids, redacted previews of tool payloads,
error serialization and loose attribute coercion.
"""
import json
import re
import time
import uuid
from typing import Any, Mapping, Optional

from .constants import PREVIEW_MAX_CHARS, SESSION_ID_SHORT_LENGTH

SECRET_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"sk-[a-zA-Z0-9]{20,}"),
    re.compile(r"""api[_-]?key["']?\s*[:=]\s*["'][^"']+["']""", re.IGNORECASE),
    re.compile(r"""authorization["']?\s*[:=]\s*["'][^"']+["']""", re.IGNORECASE),
    re.compile(r"""password["']?\s*[:=]\s*["'][^"']+["']""", re.IGNORECASE),
)
REDACTED = "[REDACTED]"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def safe_stringify(value: Any) -> str:
    """JSON-encode a value, falling back to str() for unserializable input."""
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def redact_secrets(raw: str) -> str:
    """Replace API keys, auth headers and passwords with a placeholder."""
    result = raw
    for pattern in SECRET_PATTERNS:
        result = pattern.sub(REDACTED, result)
    return result


def preview(value: Any, max_chars: int = PREVIEW_MAX_CHARS) -> str:
    """
    Compact, redacted, truncated rendering of a tool input or output.

    Args:
        value: Any JSON-like payload.
        max_chars: Length after which the text is cut and "..." appended.

    Returns:
        Preview string.
    """
    compact = redact_secrets(safe_stringify(value))
    if len(compact) > max_chars:
        return f"{compact[:max_chars]}..."
    return compact


def truncate_head(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return f"{value[:limit]}..."


def safe_error(error: Any) -> dict[str, Any]:
    """Serializable description of an exception (or any error value)."""
    if isinstance(error, BaseException):
        return {
            "name": type(error).__name__,
            "message": str(error),
        }
    return {"value": str(error)}


def as_str(value: Any) -> Optional[str]:
    """Stringify a loosely typed attribute; None for missing or blank values."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def as_dict(value: Any) -> Optional[dict[str, Any]]:
    if isinstance(value, Mapping):
        return dict(value)
    return None


def attr(attrs: Optional[Mapping[str, Any]], key: str) -> Any:
    """Read one key from an optional attrs bag."""
    if not attrs:
        return None
    return attrs.get(key)


def merge_attrs(*parts: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
    """Merge attrs bags left to right, skipping None values; None if empty."""
    merged: dict[str, Any] = {}
    for part in parts:
        if not part:
            continue
        for key, value in part.items():
            if value is not None:
                merged[key] = value
    return merged or None


def shorten_session_id(session_id: str) -> str:
    """Display form of a long session id: first 6 and last 4 characters."""
    if len(session_id) <= SESSION_ID_SHORT_LENGTH:
        return session_id
    return f"{session_id[:6]}...{session_id[-4:]}"


_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def safe_name(value: str) -> str:
    """Make an id usable as a file or directory name."""
    return _UNSAFE_NAME_CHARS.sub("_", value)
