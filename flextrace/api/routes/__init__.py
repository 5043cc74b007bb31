"""
API Routes package for FlexTrace.

Contains the FastAPI route handlers organized by domain.
"""
from .health import router as health_router
from .trace import router as trace_router

__all__ = [
    "health_router",
    "trace_router",
]
