"""
FastAPI application for the FlexTrace viewer.

Main entry point that configures the FastAPI app with:
- CORS middleware
- Route registration under /api/v1
- Lifespan management
- Trace source errors mapped to HTTP 400

Usage:
    uvicorn flextrace.api.main:create_app --factory --port 7399
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import TraceConfigLoader, ViewerConfig
from ..core.exceptions import TraceSourceError
from ..core.logging_config import setup_viewer_logging
from ..services.timeline_service import TimelineService
from .models import ErrorResponse
from .routes import health_router, trace_router

logger = logging.getLogger(__name__)


def log_configuration(config: ViewerConfig) -> None:
    """Log the effective viewer configuration."""
    logger.info("=" * 60)
    logger.info("FLEXTRACE VIEWER CONFIGURATION")
    logger.info("=" * 60)
    for key, value in config.model_dump().items():
        logger.info(f"{key}: {value}")
    logger.info("=" * 60)


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    The viewer holds no open resources; startup and shutdown are logged.
    """
    config: ViewerConfig = app.state.viewer_config
    source = config.trace_path or config.root_dir or "default trace root"
    logger.info(f"Starting FlexTrace viewer (source: {source})")

    yield

    logger.info("Shutting down FlexTrace viewer...")


# =============================================================================
# Application Factory
# =============================================================================

def create_app(viewer_config: Optional[ViewerConfig] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        viewer_config: Viewer settings. Loaded from flextrace.yaml and the
            environment when omitted.

    Returns:
        Configured FastAPI app instance.

    Raises:
        ConfigNotFoundError: If an explicitly configured file is missing.
        ConfigValidationError: If the configuration is invalid.
    """
    if viewer_config is None:
        viewer_config = TraceConfigLoader().get_viewer_config()

    log_configuration(viewer_config)

    app = FastAPI(
        title="FlexTrace Viewer",
        description="Read-only API over FlexTrace NDJSON traces",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.state.viewer_config = viewer_config
    app.state.timeline_service = TimelineService(viewer_config)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=viewer_config.cors_origins,
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # Register routes under /api/v1 prefix
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(trace_router, prefix="/api/v1")

    @app.exception_handler(TraceSourceError)
    async def trace_source_error_handler(
        request: Request, exc: TraceSourceError
    ) -> JSONResponse:
        """Convert TraceSourceError to a 400 response."""
        logger.warning(f"Trace source error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error=str(exc)).model_dump(),
        )

    return app


def run_server(viewer_config: ViewerConfig, log_level: str = "INFO") -> None:
    """
    Serve the viewer with uvicorn until interrupted.

    Args:
        viewer_config: Viewer settings (host, port, sources).
        log_level: Logging level for the viewer loggers.
    """
    import uvicorn

    setup_viewer_logging(log_level=log_level)
    app = create_app(viewer_config)
    logger.info(f"Trace viewer listening on http://{viewer_config.host}:{viewer_config.port}")
    uvicorn.run(
        app,
        host=viewer_config.host,
        port=viewer_config.port,
        log_config=None,
    )


if __name__ == "__main__":
    run_server(TraceConfigLoader().get_viewer_config())
