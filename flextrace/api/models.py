"""
Pydantic response models for the FlexTrace viewer API.

Timeline payloads reuse the core view models (TimelineSnapshot, SourceInfo);
the models here cover the remaining endpoints. JSON keys are camelCase.
"""
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

from ..core.schemas import CamelModel, SourceInfo, TraceRecord


class HealthResponse(BaseModel):
    """Response from GET /health."""
    status: str = Field(default="ok", description="Health status")
    version: str = Field(description="API version")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Current server time"
    )


class TraceResponse(CamelModel):
    """Response from GET /trace: raw records plus source bookkeeping."""
    ok: bool = True
    trace_path: str
    trace_mode: Literal["single", "multi"]
    trace_root: Optional[str] = None
    project_filter: Optional[str] = None
    loaded_sessions: int
    discovered_sessions: int
    source_files: list[str] = Field(default_factory=list)
    discovered_source_files: list[str] = Field(default_factory=list)
    excluded_source_files: list[str] = Field(default_factory=list)
    total_records: int
    malformed_lines: int
    records: list[TraceRecord] = Field(default_factory=list)


class SourcesResponse(CamelModel):
    """Response from GET /sources."""
    ok: bool = True
    sources: list[SourceInfo] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Body returned for trace source errors."""
    ok: bool = False
    error: str
