"""Health check endpoints."""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from funnel_presentations.config import get_settings
from funnel_presentations.db.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter()
settings = get_settings()


def _check_database(db: Session) -> bool:
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("Database health check failed")
        return False


def _check_media_dir(app_settings) -> bool:
    """Return True if the media directory exists and is a directory."""
    return Path(app_settings.media_dir).is_dir()


@router.get("/health")
async def health_check(request: Request, db: Session = Depends(get_db)):
    """Health check endpoint."""
    database_ok = _check_database(db)
    orchestrator = getattr(request.app.state, "orchestrator", None)

    return {
        "status": "healthy" if database_ok else "degraded",
        "version": settings.app_version,
        "database": "connected" if database_ok else "unavailable",
        "generation": {
            "text_model": settings.chat_model,
            "image_model": settings.image_model,
            "images_enabled": bool(orchestrator and orchestrator.image_generator),
            "stream_timeout_seconds": settings.stream_timeout_seconds,
        },
        "media": {
            "dir": settings.media_dir,
            "available": _check_media_dir(settings),
        },
    }


@router.get("/version")
async def version():
    """Get version info."""
    return {"name": settings.app_name, "version": settings.app_version}
