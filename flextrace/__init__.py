"""
FlexTrace: append-only tracing of nested agent sessions.

Packages:
    core: record model, writers, timeline reconstruction, capture hooks, CLI
    services: timeline snapshot service shared by the CLI and the viewer API
    api: read-only FastAPI viewer
"""
__version__ = "0.1.0"
