"""
Trace endpoints for the FlexTrace viewer API.

Provides endpoints for:
- GET /trace - Raw records from the selected sources
- GET /timeline - Reconstructed timeline with lanes, handoffs, freshness and source status
- GET /sources - Discovered source files and whether they are active

All endpoints accept the same source selection query parameters (path, root,
project, limit, exclude). Files are re-read on every request.
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...core.constants import ALL_PROJECTS
from ...core.schemas import TimelineSnapshot
from ...services.timeline_service import TimelineService, TraceRequest
from ..deps import get_timeline_service
from ..models import SourcesResponse, TraceResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["trace"])


def trace_request(
    path: Optional[str] = Query(default=None, description="Explicit trace file (single mode)"),
    root: Optional[str] = Query(default=None, description="Trace root directory"),
    project: Optional[str] = Query(default=None, description="Project directory name or 'all'"),
    limit: Optional[int] = Query(default=None, ge=1, description="Maximum discovered files"),
    exclude: list[str] = Query(default=[], description="Source paths to skip (repeatable, comma-separated)"),
) -> TraceRequest:
    """Collect the source selection query parameters."""
    return TraceRequest(path=path, root=root, project=project, limit=limit, exclude=exclude)


@router.get("/trace", response_model=TraceResponse)
async def get_trace(
    request: TraceRequest = Depends(trace_request),
    service: TimelineService = Depends(get_timeline_service),
) -> TraceResponse:
    """Raw records of the selected sources."""
    payload = await asyncio.to_thread(service.get_records, request)
    return TraceResponse(**payload)


@router.get("/timeline", response_model=TimelineSnapshot)
async def get_timeline(
    request: TraceRequest = Depends(trace_request),
    focus_root: str = Query(default=ALL_PROJECTS, alias="focusRoot", description="Root session for lane rows"),
    service: TimelineService = Depends(get_timeline_service),
) -> TimelineSnapshot:
    """Timeline, lanes and handoffs, with lag/stale and per-source status."""
    return await asyncio.to_thread(service.get_timeline, request, focus_root)


@router.get("/sources", response_model=SourcesResponse)
async def get_sources(
    request: TraceRequest = Depends(trace_request),
    service: TimelineService = Depends(get_timeline_service),
) -> SourcesResponse:
    """Discovered source files with freshness."""
    sources = await asyncio.to_thread(service.list_sources, request)
    return SourcesResponse(sources=sources)
