"""FastAPI application entry point."""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from funnel_presentations.api import health, presentations
from funnel_presentations.config import get_settings
from funnel_presentations.core.error_handlers import register_error_handlers
from funnel_presentations.core.logging import configure_logging
from funnel_presentations.db.database import init_db
from funnel_presentations.middleware.request_logging import RequestLoggingMiddleware
from funnel_presentations.services.factory import get_orchestrator

settings = get_settings()
configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)

# StaticFiles checks the directory when mounted
os.makedirs(settings.media_dir, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize and cleanup services."""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"  Chat model: {settings.chat_model} @ {settings.ollama_base_url}")
    logger.info(f"  Image model: {settings.image_model}")
    logger.info(f"  Media dir: {settings.media_dir} -> {settings.media_base_url}")
    logger.info(f"  Stream timeout: {settings.stream_timeout_seconds}s")
    logger.info("=" * 60)
    logger.info(f"Debug mode: {settings.debug}")

    # Track server start time for uptime calculation
    app.state.start_time = time.time()

    # Store settings in app.state for Depends() access
    app.state.settings = settings

    init_db()
    os.makedirs(settings.media_dir, exist_ok=True)

    # Providers are stateless clients; one orchestrator serves every stream
    app.state.orchestrator = get_orchestrator(settings)
    logger.info("SlideGenerationOrchestrator initialized (singleton)")

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Resumable streaming slide generation for marketing funnels",
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Register global error handlers (AppError → JSON responses)
register_error_handlers(app)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request logging middleware (adds X-Request-ID, logs method/path/latency)
app.add_middleware(RequestLoggingMiddleware)

# API Routes
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(presentations.router, prefix="/api/presentations", tags=["Presentations"])

# Generated slide images, served as {media_base_url}/{bucket}/{path}
app.mount("/media", StaticFiles(directory=settings.media_dir), name="media")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/api/docs" if settings.debug else "disabled",
        "health": "/api/health",
        "stream": "/api/presentations/generate/stream",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "funnel_presentations.main:app", host=settings.host, port=settings.port, reload=settings.debug
    )
