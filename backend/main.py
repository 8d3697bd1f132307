"""FastAPI application entry point for the document intake backend.

This module initializes the FastAPI application with all middleware,
routers, and event handlers configured.

Usage:
    uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from api.routes import set_orchestrator as set_routes_orchestrator
from api.websocket import set_orchestrator as set_websocket_orchestrator
from api.websocket import websocket_router
from config import configure_logging, settings
from events import get_event_bus
from orchestrator import Orchestrator

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Builds the orchestrator, loads the configuration (repairing it if
    needed) and tears everything down on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        config_path=str(settings.config_path),
    )

    event_bus = get_event_bus()
    orchestrator = Orchestrator.from_settings(settings, event_bus=event_bus)

    set_routes_orchestrator(orchestrator)
    set_websocket_orchestrator(orchestrator)
    app.state.orchestrator = orchestrator

    await orchestrator.initialize()
    logger.info("application_started")

    yield

    logger.info("application_shutting_down")
    await orchestrator.shutdown()
    event_bus.close()
    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="Document Intake Orchestrator",
    description="Backend API that runs batch PDF processing jobs, tracks their "
    "progress and keeps the persisted configuration healthy.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include HTTP routes
app.include_router(router, tags=["orchestrator"])

# Include WebSocket routes
app.include_router(websocket_router, tags=["websocket"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint pointing at the API documentation."""
    return {
        "message": "Document Intake Orchestrator API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
