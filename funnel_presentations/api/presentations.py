"""Presentation generation endpoints (SSE streaming + persisted state)."""

from collections.abc import Callable

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from funnel_presentations.config import get_settings
from funnel_presentations.core.dependencies import get_current_user, get_limiter
from funnel_presentations.core.exceptions import EntityNotFound
from funnel_presentations.core.rate_limit import RateLimiter
from funnel_presentations.db.database import SessionLocal, get_db
from funnel_presentations.db.models import User
from funnel_presentations.db.repositories import PresentationRepository
from funnel_presentations.schemas.presentation import PresentationResponse
from funnel_presentations.services.factory import get_orchestrator
from funnel_presentations.services.progress_store import ProgressStore
from funnel_presentations.services.slide_orchestrator import SlideGenerationOrchestrator
from funnel_presentations.services.sse_events import SSE_HEADERS
from funnel_presentations.services.stream_session import StreamRequest, StreamSessionController

router = APIRouter()


# =============================================================================
# Dependencies
# =============================================================================


def get_session_factory() -> Callable[[], Session]:
    """Session factory for work that outlives the request session."""
    return SessionLocal


def get_slide_orchestrator(request: Request) -> SlideGenerationOrchestrator:
    """App-wide orchestrator, built on first use if lifespan did not create it."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        orchestrator = get_orchestrator(get_settings())
        request.app.state.orchestrator = orchestrator
    return orchestrator


def get_stream_controller(
    orchestrator: SlideGenerationOrchestrator = Depends(get_slide_orchestrator),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    limiter: RateLimiter = Depends(get_limiter),
) -> StreamSessionController:
    """One controller per connection."""
    return StreamSessionController(
        orchestrator=orchestrator,
        progress_store=ProgressStore(session_factory),
        rate_limiter=limiter,
        settings=get_settings(),
        session_factory=session_factory,
    )


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/generate/stream")
async def stream_presentation_generation(
    project_id: str | None = Query(None, alias="projectId"),
    deck_structure_id: str | None = Query(None, alias="deckStructureId"),
    customization: str | None = Query(None),
    resume_presentation_id: str | None = Query(None, alias="resumePresentationId"),
    resume_from_slide: str | None = Query(None, alias="resumeFromSlide"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    controller: StreamSessionController = Depends(get_stream_controller),
):
    """Stream slide generation as server-sent events.

    Events: connected, slide_generated, progress, completed, error, plus
    ``:heartbeat`` comments. Pass ``resumePresentationId`` and a positive
    ``resumeFromSlide`` to continue an interrupted presentation.
    """
    stream_request = StreamRequest(
        project_id=project_id,
        deck_structure_id=deck_structure_id,
        customization=customization,
        resume_presentation_id=resume_presentation_id,
        resume_from_slide=resume_from_slide,
    )
    job = await controller.initialize(db, current_user, stream_request)

    return StreamingResponse(
        controller.stream(job),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/{presentation_id}", response_model=PresentationResponse)
async def get_presentation(
    presentation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Persisted presentation state, for reconciling before a resume."""
    presentation = PresentationRepository(db).get_for_user(presentation_id, current_user.id)
    if presentation is None:
        raise EntityNotFound("Presentation not found")

    slides = list(presentation.slides or [])
    return PresentationResponse(
        id=presentation.id,
        title=presentation.title,
        status=presentation.status,
        slides=slides,
        slide_count=len(slides),
        generation_progress=presentation.generation_progress or 0,
        total_expected_slides=presentation.total_expected_slides,
        error_message=presentation.error_message,
        funnel_project_id=presentation.funnel_project_id,
        deck_structure_id=presentation.deck_structure_id,
        completed_at=presentation.completed_at,
        created_at=presentation.created_at,
        updated_at=presentation.updated_at,
    )
