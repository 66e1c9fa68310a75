"""Stream Session Controller.

Owns one client connection for a slide-generation job:

    Initializing -> Connected -> Generating -> {Completed | Draft | Failed}

``initialize`` runs every check that can reject the request (rate limit,
customization, ownership, quota, status transition) before any event is
sent, then creates or reloads the presentation. ``stream`` yields SSE frames
until a terminal ``completed`` or ``error`` event, after which the channel is
closed exactly once.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from funnel_presentations.config import Settings, get_settings
from funnel_presentations.core.exceptions import (
    AccessDeniedError,
    EntityNotFound,
    PresentationLimitError,
    RateLimitedError,
    SlideGenerationError,
    StreamTimeoutError,
    ValidationError,
)
from funnel_presentations.core.logging import presentation_id_var
from funnel_presentations.core.rate_limit import RateLimiter, get_rate_limit_identifier
from funnel_presentations.db.database import SessionLocal
from funnel_presentations.db.models import PresentationStatus, User
from funnel_presentations.db.repositories import (
    BrandDesignRepository,
    BusinessProfileRepository,
    DeckStructureRepository,
    FunnelProjectRepository,
    PresentationRepository,
    merge_slide,
)
from funnel_presentations.schemas.presentation import (
    BrandContext,
    BusinessContext,
    PresentationCustomization,
    Slide,
    SlideSpec,
    validate_deck_slides,
)
from funnel_presentations.services.progress_store import ProgressStore
from funnel_presentations.services.slide_orchestrator import (
    SlideGenerationOrchestrator,
    compute_progress,
)
from funnel_presentations.services.sse_events import EventChannel, HeartbeatTicker

logger = logging.getLogger(__name__)

RATE_LIMIT_ENDPOINT = "presentation-generation"

# Strong references so a run outlives a cancelled consumer while it finalizes
_active_runs: set[asyncio.Task] = set()


class SessionState(StrEnum):
    INITIALIZING = "initializing"
    CONNECTED = "connected"
    GENERATING = "generating"
    COMPLETED = "completed"
    DRAFT = "draft"
    FAILED = "failed"


class FailureReason(StrEnum):
    STREAM_TIMEOUT = "STREAM_TIMEOUT"
    AI_PROVIDER_TIMEOUT = "AI_PROVIDER_TIMEOUT"
    GENERATION_FAILED = "GENERATION_FAILED"
    CLIENT_DISCONNECTED = "CLIENT_DISCONNECTED"


def parse_resume_from_slide(raw: str | int | None) -> int:
    """Parse ``resumeFromSlide``; anything missing, malformed or negative is 0.

    Only a whole integer counts, so "3abc" is 0 rather than 3. A 0 makes the
    request a new job, which goes through the rate limit like any other.
    """
    if raw is None or raw == "":
        return 0
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return 0
    return max(value, 0)


def is_valid_resume(resume_presentation_id: str | None, resume_from_slide: int) -> bool:
    """A resume needs both an id and a positive slide number; 0 means a new job."""
    return bool(resume_presentation_id) and resume_from_slide > 0


def contiguous_prefix(slides: list[dict]) -> list[dict]:
    """Persisted slides 1..p with no gap, in order."""
    by_number = {s.get("slideNumber"): s for s in slides if isinstance(s, dict)}
    prefix = []
    number = 1
    while number in by_number:
        prefix.append(by_number[number])
        number += 1
    return prefix


@dataclass
class StreamRequest:
    """Raw query parameters of a stream request."""

    project_id: str | None
    deck_structure_id: str | None
    customization: str | None = None
    resume_presentation_id: str | None = None
    resume_from_slide: str | int | None = None

    @property
    def resume_from(self) -> int:
        return parse_resume_from_slide(self.resume_from_slide)

    @property
    def is_resuming(self) -> bool:
        return is_valid_resume(self.resume_presentation_id, self.resume_from)


@dataclass
class GenerationJob:
    """In-memory unit of work for one connection."""

    presentation_id: str
    user_id: str
    project_id: str
    total_slides: int
    total_expected: int
    start_from_slide: int
    is_resuming: bool
    pending_specs: list[SlideSpec]
    customization: PresentationCustomization
    business: BusinessContext | None = None
    brand: BrandContext | None = None
    carry_over: list[dict] = field(default_factory=list)
    restored: list[dict] = field(default_factory=list)
    deadline_seconds: float = 4500.0


def parse_customization(raw: str | None) -> PresentationCustomization:
    """Parse the serialized customization query parameter.

    Raises:
        ValidationError: Unparseable JSON or an out-of-range option.
    """
    if not raw:
        return PresentationCustomization()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError("Invalid customization parameters") from e
    if not isinstance(data, dict):
        raise ValidationError("Invalid customization parameters")
    try:
        return PresentationCustomization.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid customization parameters",
            context={"errors": [err["msg"] for err in e.errors()]},
        ) from e


class StreamSessionController:
    """Runs one generation job over one SSE connection."""

    def __init__(
        self,
        orchestrator: SlideGenerationOrchestrator,
        progress_store: ProgressStore,
        rate_limiter: RateLimiter,
        settings: Settings | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.orchestrator = orchestrator
        self.progress_store = progress_store
        self.rate_limiter = rate_limiter
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.state = SessionState.INITIALIZING

    # --- Initializing ---

    async def _check_rate_limit(self, user: User, request: StreamRequest) -> None:
        if request.is_resuming:
            logger.info(
                "Rate limit bypassed for resume request",
                extra={
                    "user_id": user.id,
                    "resume_presentation_id": request.resume_presentation_id,
                    "resume_from_slide": request.resume_from,
                },
            )
            return

        decision = await self.rate_limiter.check(
            get_rate_limit_identifier(user.id, RATE_LIMIT_ENDPOINT)
        )
        if not decision.allowed:
            logger.warning(
                "Presentation generation rate limited",
                extra={"user_id": user.id, "identifier": decision.identifier},
            )
            raise RateLimitedError(
                "Too many generation requests. Please try again later.",
                context={"retry_after": decision.retry_after},
            )

    async def initialize(self, db: Session, user: User, request: StreamRequest) -> GenerationJob:
        """Validate the request and create or reload the presentation.

        Raises:
            AppError: Any rejection; nothing has been written when raised.
        """
        if not request.project_id or not request.deck_structure_id:
            raise ValidationError("projectId and deckStructureId are required")

        await self._check_rate_limit(user, request)
        customization = parse_customization(request.customization)

        project = FunnelProjectRepository(db).get(request.project_id)
        if project is None:
            raise EntityNotFound("Project not found")
        if project.user_id != user.id:
            raise AccessDeniedError("You do not have access to this project")

        deck = DeckStructureRepository(db).get_for_user(request.deck_structure_id, user.id)
        if deck is None:
            raise EntityNotFound("Deck structure not found")

        specs = validate_deck_slides(deck.slides)
        if not specs:
            raise ValidationError("Deck structure has no slides")

        business_row = BusinessProfileRepository(db).get_for_project(project.id)
        brand_row = BrandDesignRepository(db).get_for_project(project.id)
        business = BusinessContext.model_validate(business_row, from_attributes=True) if business_row else None
        brand = BrandContext.model_validate(brand_row, from_attributes=True) if brand_row else None

        repo = PresentationRepository(db)
        if request.is_resuming:
            presentation, start, carry_over, restored = self._reload_for_resume(
                repo, user, request, len(specs)
            )
        else:
            if self.settings.presentation_limit_enabled:
                existing = repo.count_counted_against_quota(project.id)
                if existing >= self.settings.presentation_limit:
                    raise PresentationLimitError(
                        f"Presentation limit reached ({self.settings.presentation_limit} per project)",
                        context={"limit": self.settings.presentation_limit, "current": existing},
                    )
            presentation = repo.create_generating(
                user_id=user.id,
                funnel_project_id=project.id,
                deck_structure_id=deck.id,
                title=deck.title or "Untitled Presentation",
                customization=customization.to_wire(),
                total_expected_slides=len(specs),
            )
            start, carry_over, restored = 1, [], []

        db.commit()
        db.refresh(presentation)

        job = GenerationJob(
            presentation_id=presentation.id,
            user_id=user.id,
            project_id=project.id,
            total_slides=len(specs),
            total_expected=presentation.total_expected_slides or len(specs),
            start_from_slide=start,
            is_resuming=request.is_resuming,
            pending_specs=[s for s in specs if s.slide_number >= start],
            customization=customization,
            business=business,
            brand=brand,
            carry_over=carry_over,
            restored=restored,
            deadline_seconds=self.settings.stream_timeout_seconds,
        )
        logger.info(
            "Generation job initialized",
            extra={
                "presentation_id": job.presentation_id,
                "user_id": user.id,
                "is_resuming": job.is_resuming,
                "start_from_slide": start,
                "slides_to_generate": len(job.pending_specs),
                "total_slides": job.total_slides,
            },
        )
        return job

    def _reload_for_resume(self, repo: PresentationRepository, user: User, request: StreamRequest, total: int):
        presentation = repo.get(request.resume_presentation_id)
        if presentation is None:
            raise EntityNotFound("Presentation not found")
        if presentation.user_id != user.id:
            raise AccessDeniedError("You do not have access to this presentation")
        if presentation.funnel_project_id != request.project_id:
            raise ValidationError("Presentation does not belong to this project")

        prefix = contiguous_prefix(list(presentation.slides or []))
        persisted_count = len(prefix)
        requested = request.resume_from
        start = min(persisted_count + 1, total + 1)

        if requested > persisted_count + 1:
            logger.warning(
                f"Resume requested from slide {requested} but only {persisted_count} "
                f"contiguous slides are persisted; restarting at {start}",
                extra={"presentation_id": presentation.id, "resume_from_slide": requested},
            )
        restored = [s for s in prefix if s["slideNumber"] >= requested]

        repo.transition(presentation, PresentationStatus.GENERATING, error_message=None)
        return presentation, start, prefix, restored

    # --- Connected / Generating ---

    async def stream(self, job: GenerationJob) -> AsyncIterator[str]:
        """Yield SSE frames for ``job`` until its terminal event.

        Closing the generator early (client disconnect) cancels generation and
        finalizes the presentation from what was persisted.
        """
        channel = EventChannel()
        heartbeat = HeartbeatTicker(channel, self.settings.sse_heartbeat_seconds)
        runner = asyncio.create_task(
            self._run(job, channel, heartbeat), name=f"generate-{job.presentation_id}"
        )
        _active_runs.add(runner)
        runner.add_done_callback(_active_runs.discard)
        try:
            async for frame in channel:
                yield frame
        finally:
            heartbeat.stop()
            if not runner.done():
                logger.info(
                    "Client disconnected, stopping generation",
                    extra={"presentation_id": job.presentation_id},
                )
                runner.cancel()
            await asyncio.wait([runner])
            error = None if runner.cancelled() else runner.exception()
            if error is not None:
                logger.error(
                    f"Generation task crashed: {error}",
                    exc_info=error,
                    extra={"presentation_id": job.presentation_id},
                )

    async def _run(self, job: GenerationJob, channel: EventChannel, heartbeat: HeartbeatTicker) -> None:
        presentation_id_var.set(job.presentation_id)
        try:
            self._connect(job, channel)
            heartbeat.start()
            await self._generate(job, channel, heartbeat)
        finally:
            heartbeat.stop()
            channel.close()
            self.progress_store.forget(job.presentation_id)

    def _connect(self, job: GenerationJob, channel: EventChannel) -> None:
        self.state = SessionState.CONNECTED
        channel.send(
            "connected",
            {
                "presentationId": job.presentation_id,
                "totalSlides": job.total_slides,
                "isResuming": job.is_resuming,
                "startFromSlide": job.start_from_slide,
                "slidesToGenerate": len(job.pending_specs),
            },
        )
        for slide in job.restored:
            number = slide["slideNumber"]
            channel.send(
                "slide_generated",
                {
                    "slide": slide,
                    "slideNumber": number,
                    "progress": compute_progress(number, job.total_expected),
                    "restored": True,
                },
            )

    async def _generate(self, job: GenerationJob, channel: EventChannel, heartbeat: HeartbeatTicker) -> None:
        self.state = SessionState.GENERATING

        async def on_slide(slide: Slide, progress: int) -> None:
            wire = slide.to_wire()
            channel.send(
                "slide_generated",
                {"slide": wire, "slideNumber": slide.slide_number, "progress": progress},
            )
            channel.send("progress", {"progress": progress, "currentSlide": slide.slide_number})
            self.progress_store.schedule_append(job.presentation_id, wire, progress)

        try:
            async with asyncio.timeout(job.deadline_seconds) as scope:
                new_slides = await self.orchestrator.generate(
                    job.pending_specs,
                    presentation_id=job.presentation_id,
                    customization=job.customization,
                    on_slide=on_slide,
                    business=job.business,
                    brand=job.brand,
                    total_expected=job.total_expected,
                    completed_offset=job.start_from_slide - 1,
                    timeout_seconds=job.deadline_seconds,
                )
        except asyncio.CancelledError:
            await self._finish_interrupted(
                job, channel, heartbeat, FailureReason.CLIENT_DISCONNECTED, "Client disconnected"
            )
            raise
        except TimeoutError as e:
            if scope.expired():
                error = StreamTimeoutError(job.deadline_seconds)
                await self._finish_interrupted(
                    job, channel, heartbeat, FailureReason.STREAM_TIMEOUT, str(error), is_timeout=True
                )
            else:
                await self._finish_interrupted(
                    job, channel, heartbeat, FailureReason.AI_PROVIDER_TIMEOUT, str(e), is_timeout=True
                )
            return
        except SlideGenerationError as e:
            if isinstance(e.cause, StreamTimeoutError):
                reason = FailureReason.STREAM_TIMEOUT
            elif e.is_timeout:
                reason = FailureReason.AI_PROVIDER_TIMEOUT
            else:
                reason = FailureReason.GENERATION_FAILED
            await self._finish_interrupted(
                job, channel, heartbeat, reason, str(e.cause), is_timeout=e.is_timeout
            )
            return
        except Exception as e:
            logger.exception("Unexpected error during slide generation")
            await self._finish_interrupted(job, channel, heartbeat, FailureReason.GENERATION_FAILED, str(e))
            return

        await self._finish_completed(job, channel, heartbeat, new_slides)

    # --- Terminal states ---

    def _transition_sync(self, presentation_id: str, target: PresentationStatus, **fields) -> None:
        db = self.session_factory()
        try:
            repo = PresentationRepository(db)
            presentation = repo.get(presentation_id)
            if presentation is None:
                logger.warning(
                    "Presentation vanished before finalization",
                    extra={"presentation_id": presentation_id},
                )
                return
            repo.transition(presentation, target, **fields)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def _persist_status(self, presentation_id: str, target: PresentationStatus, **fields) -> bool:
        try:
            await asyncio.to_thread(self._transition_sync, presentation_id, target, **fields)
            return True
        except Exception:
            logger.exception(
                f"Failed to mark presentation as {target.value}",
                extra={"presentation_id": presentation_id, "to_status": target.value},
            )
            return False

    async def _finish_completed(
        self,
        job: GenerationJob,
        channel: EventChannel,
        heartbeat: HeartbeatTicker,
        new_slides: list[Slide],
    ) -> None:
        heartbeat.stop()
        await self.progress_store.flush(job.presentation_id)

        slides = list(job.carry_over)
        for slide in new_slides:
            slides = merge_slide(slides, slide.to_wire())

        await self._persist_status(
            job.presentation_id,
            PresentationStatus.COMPLETED,
            slides=slides,
            generation_progress=100,
            completed_at=datetime.utcnow(),
            error_message=None,
        )
        self.state = SessionState.COMPLETED
        channel.send(
            "completed",
            {"presentationId": job.presentation_id, "slides": slides, "slideCount": len(slides)},
        )
        logger.info(
            "Streaming presentation generation complete",
            extra={
                "presentation_id": job.presentation_id,
                "slide_count": len(slides),
                "slides_generated": len(new_slides),
            },
        )
        channel.close()

    async def _finish_interrupted(
        self,
        job: GenerationJob,
        channel: EventChannel,
        heartbeat: HeartbeatTicker,
        reason: FailureReason,
        message: str,
        is_timeout: bool = False,
    ) -> None:
        heartbeat.stop()
        await self.progress_store.flush(job.presentation_id)
        persisted = await self.progress_store.read_slides(job.presentation_id)
        slides_generated = len(persisted)

        if slides_generated > 0:
            status = PresentationStatus.DRAFT
            error_message = f"Generation stopped at slide {slides_generated}. {message}"
        else:
            status = PresentationStatus.FAILED
            error_message = message

        await self._persist_status(job.presentation_id, status, error_message=error_message)
        self.state = SessionState(status.value)

        logger.log(
            logging.INFO if reason is FailureReason.CLIENT_DISCONNECTED else logging.ERROR,
            f"Presentation marked as {status.value} after generation stopped: {message}",
            extra={
                "presentation_id": job.presentation_id,
                "reason": reason.value,
                "is_timeout": is_timeout,
                "slides_generated": slides_generated,
                "to_status": status.value,
            },
        )
        channel.send(
            "error",
            {
                "error": message,
                "reason": reason.value,
                "presentationId": job.presentation_id,
                "isTimeout": is_timeout,
                "slidesGenerated": slides_generated,
                "status": status.value,
            },
        )
        channel.close()
