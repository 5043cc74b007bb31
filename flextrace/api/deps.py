"""
FastAPI dependencies for the FlexTrace viewer API.
"""
from fastapi import Request

from ..services.timeline_service import TimelineService


def get_timeline_service(request: Request) -> TimelineService:
    """Timeline service bound to the app's viewer configuration."""
    return request.app.state.timeline_service
