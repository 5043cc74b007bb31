"""
Services package for FlexTrace.

Contains the read-side logic shared by the viewer API and the tracectl watch
command.
"""
from .timeline_service import TimelineService, TraceRequest, build_timeline_snapshot

__all__ = [
    "TimelineService",
    "TraceRequest",
    "build_timeline_snapshot",
]
