"""
FlexTrace exceptions.

Custom exception classes for FlexTrace.
"""


class FlexTraceError(Exception):
    """Base exception for FlexTrace errors."""
    pass


class TraceWriterError(FlexTraceError):
    """Appending to a trace file failed (disk full, permission denied)."""
    pass


class TraceSourceError(FlexTraceError):
    """No readable trace source could be resolved."""
    pass


class ExportFormatError(FlexTraceError):
    """Unsupported export format requested."""
    pass


class TraceToolError(FlexTraceError):
    """A trace tool is unknown, disabled, or was called with invalid arguments."""
    pass
