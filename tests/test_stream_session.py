"""Tests for the stream session controller.

Covers the connection lifecycle end to end against the test database:
completion, partial failure, stream deadline, resume reconciliation,
quota, heartbeats, and client disconnect.
"""

import json

import pytest

from funnel_presentations.core.exceptions import (
    AccessDeniedError,
    EntityNotFound,
    InvalidStatusTransition,
    PresentationLimitError,
    RateLimitedError,
    ValidationError,
)
from funnel_presentations.core.rate_limit import RateLimiter
from funnel_presentations.db.models import DeckStructure, Presentation
from funnel_presentations.db.repositories import PresentationRepository
from funnel_presentations.services.stream_session import (
    FailureReason,
    SessionState,
    StreamRequest,
    contiguous_prefix,
    parse_customization,
    parse_resume_from_slide,
)


def parse_frames(frames: list[str]) -> list[tuple[str, dict | str]]:
    """(event, data) pairs; comment frames come back as ("comment", text)."""
    parsed = []
    for frame in frames:
        if frame.startswith(":"):
            parsed.append(("comment", frame[1:].strip()))
            continue
        event, data = None, None
        for line in frame.strip().split("\n"):
            if line.startswith("event: "):
                event = line[len("event: ") :]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: ") :])
        parsed.append((event, data))
    return parsed


async def collect(controller, job) -> list[tuple[str, dict | str]]:
    return parse_frames([frame async for frame in controller.stream(job)])


def events_of(parsed, event_type):
    return [data for event, data in parsed if event == event_type]


def new_request(project, deck, **kwargs) -> StreamRequest:
    return StreamRequest(project_id=project.id, deck_structure_id=deck.id, **kwargs)


def load(db, presentation_id) -> Presentation:
    db.expire_all()
    return db.get(Presentation, presentation_id)


def seed_presentation(db, owner, project, deck, status, slide_numbers) -> Presentation:
    presentation = PresentationRepository(db).create_generating(
        user_id=owner.id,
        funnel_project_id=project.id,
        deck_structure_id=deck.id,
        title="Webinar Deck",
        total_expected_slides=5,
    )
    presentation.status = status
    presentation.slides = [
        {"slideNumber": n, "title": f"Saved {n}", "content": [], "layoutType": "bullets"}
        for n in slide_numbers
    ]
    db.commit()
    db.refresh(presentation)
    return presentation


class TestHelpers:
    @pytest.mark.parametrize(
        "raw,expected",
        [(None, 0), ("", 0), ("abc", 0), ("3abc", 0), ("-3", 0), ("0", 0), ("4", 4), (7, 7)],
    )
    def test_parse_resume_from_slide(self, raw, expected):
        assert parse_resume_from_slide(raw) == expected

    def test_resume_requires_id_and_positive_slide(self):
        assert StreamRequest("p", "d", resume_presentation_id="x", resume_from_slide="2").is_resuming
        assert not StreamRequest("p", "d", resume_presentation_id="x", resume_from_slide="0").is_resuming
        assert not StreamRequest("p", "d", resume_presentation_id=None, resume_from_slide="2").is_resuming

    def test_contiguous_prefix_stops_at_gap(self):
        slides = [{"slideNumber": 1}, {"slideNumber": 2}, {"slideNumber": 4}]
        assert [s["slideNumber"] for s in contiguous_prefix(slides)] == [1, 2]

    def test_contiguous_prefix_requires_slide_one(self):
        assert contiguous_prefix([{"slideNumber": 2}]) == []

    def test_parse_customization_defaults(self):
        assert parse_customization(None).text_density == "balanced"

    def test_parse_customization_camel_case(self):
        parsed = parse_customization('{"textDensity": "minimal", "imageStyle": "icons"}')
        assert parsed.text_density == "minimal"
        assert parsed.image_style == "icons"

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"textDensity": "extreme"}'])
    def test_parse_customization_rejects(self, raw):
        with pytest.raises(ValidationError):
            parse_customization(raw)


class TestNewGeneration:
    @pytest.mark.asyncio
    async def test_completes_with_all_slides(self, db, owner, project, deck, controller_factory):
        controller = controller_factory()
        job = await controller.initialize(db, owner, new_request(project, deck))
        parsed = await collect(controller, job)

        assert parsed[0][0] == "connected"
        connected = parsed[0][1]
        assert connected["presentationId"] == job.presentation_id
        assert connected["totalSlides"] == 5
        assert connected["isResuming"] is False
        assert connected["startFromSlide"] == 1
        assert connected["slidesToGenerate"] == 5

        generated = events_of(parsed, "slide_generated")
        assert [e["slideNumber"] for e in generated] == [1, 2, 3, 4, 5]
        assert [e["progress"] for e in generated] == [20, 40, 60, 80, 100]

        assert parsed[-1][0] == "completed"
        completed = parsed[-1][1]
        assert completed["slideCount"] == 5
        assert [s["slideNumber"] for s in completed["slides"]] == [1, 2, 3, 4, 5]

        presentation = load(db, job.presentation_id)
        assert presentation.status == "completed"
        assert presentation.generation_progress == 100
        assert presentation.completed_at is not None
        assert presentation.error_message is None
        assert [s["slideNumber"] for s in presentation.slides] == [1, 2, 3, 4, 5]
        assert controller.state is SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_each_slide_followed_by_progress(self, db, owner, project, deck, controller_factory):
        controller = controller_factory()
        job = await controller.initialize(db, owner, new_request(project, deck))
        parsed = await collect(controller, job)

        body = [event for event, _ in parsed[1:-1]]
        assert body == ["slide_generated", "progress"] * 5
        progress = events_of(parsed, "progress")
        assert progress[2] == {"progress": 60, "currentSlide": 3}

    @pytest.mark.asyncio
    async def test_slide_wire_format_is_camel_case(self, db, owner, project, deck, controller_factory):
        controller = controller_factory()
        job = await controller.initialize(db, owner, new_request(project, deck))
        parsed = await collect(controller, job)

        slide = events_of(parsed, "slide_generated")[0]["slide"]
        assert slide["slideNumber"] == 1
        assert slide["layoutType"] == "title"
        assert "speakerNotes" in slide
        assert events_of(parsed, "slide_generated")[-1]["slide"]["layoutType"] == "cta"

    @pytest.mark.asyncio
    async def test_record_created_before_stream(self, db, owner, project, deck, controller_factory):
        controller = controller_factory()
        job = await controller.initialize(
            db, owner, new_request(project, deck, customization='{"textDensity": "detailed"}')
        )

        presentation = load(db, job.presentation_id)
        assert presentation.status == "generating"
        assert presentation.slides == []
        assert presentation.total_expected_slides == 5
        assert presentation.title == "Webinar Deck"
        assert presentation.customization["textDensity"] == "detailed"

        await collect(controller, job)

    @pytest.mark.asyncio
    async def test_untitled_deck_gets_default_title(self, db, owner, project, controller_factory):
        deck = DeckStructure(
            user_id=owner.id,
            funnel_project_id=project.id,
            title=None,
            slides=[{"title": "Only"}],
        )
        db.add(deck)
        db.commit()

        controller = controller_factory()
        job = await controller.initialize(db, owner, new_request(project, deck))
        assert load(db, job.presentation_id).title == "Untitled Presentation"
        await collect(controller, job)


class TestInterruptedGeneration:
    @pytest.mark.asyncio
    async def test_failure_after_slides_saves_draft(
        self, db, owner, project, deck, controller_factory, fake_generator
    ):
        controller = controller_factory(generator=fake_generator(fail_on={4}))
        job = await controller.initialize(db, owner, new_request(project, deck))
        parsed = await collect(controller, job)

        assert [e["slideNumber"] for e in events_of(parsed, "slide_generated")] == [1, 2, 3]
        assert parsed[-1][0] == "error"
        error = parsed[-1][1]
        assert error["reason"] == FailureReason.GENERATION_FAILED.value
        assert error["status"] == "draft"
        assert error["slidesGenerated"] == 3
        assert error["isTimeout"] is False
        assert error["presentationId"] == job.presentation_id

        presentation = load(db, job.presentation_id)
        assert presentation.status == "draft"
        assert [s["slideNumber"] for s in presentation.slides] == [1, 2, 3]
        assert presentation.generation_progress == 60
        assert presentation.error_message.startswith("Generation stopped at slide 3.")
        assert controller.state is SessionState.DRAFT

    @pytest.mark.asyncio
    async def test_failure_on_first_slide_marks_failed(
        self, db, owner, project, deck, controller_factory, fake_generator
    ):
        controller = controller_factory(generator=fake_generator(fail_on={1}))
        job = await controller.initialize(db, owner, new_request(project, deck))
        parsed = await collect(controller, job)

        assert [event for event, _ in parsed] == ["connected", "error"]
        assert parsed[-1][1]["status"] == "failed"
        assert parsed[-1][1]["slidesGenerated"] == 0

        presentation = load(db, job.presentation_id)
        assert presentation.status == "failed"
        assert presentation.slides == []
        assert presentation.error_message

    @pytest.mark.asyncio
    async def test_provider_timeout_reason(
        self, db, owner, project, deck, controller_factory, fake_generator
    ):
        controller = controller_factory(generator=fake_generator(fail_on={2}, timeout=True))
        job = await controller.initialize(db, owner, new_request(project, deck))
        parsed = await collect(controller, job)

        error = parsed[-1][1]
        assert error["reason"] == FailureReason.AI_PROVIDER_TIMEOUT.value
        assert error["isTimeout"] is True
        assert error["status"] == "draft"

    @pytest.mark.asyncio
    async def test_stream_deadline_saves_draft(
        self, db, owner, project, deck, controller_factory, test_settings, fake_generator
    ):
        deck.slides = [{"title": f"Topic {i}", "section": "Body"} for i in range(1, 11)]
        db.commit()
        settings = test_settings.model_copy(update={"stream_timeout_seconds": 0.7})
        controller = controller_factory(settings=settings, generator=fake_generator(delay=0.2))

        job = await controller.initialize(db, owner, new_request(project, deck))
        parsed = await collect(controller, job)

        assert [e["slideNumber"] for e in events_of(parsed, "slide_generated")] == [1, 2, 3]
        error = parsed[-1][1]
        assert parsed[-1][0] == "error"
        assert error["reason"] == FailureReason.STREAM_TIMEOUT.value
        assert error["isTimeout"] is True
        assert error["slidesGenerated"] == 3

        presentation = load(db, job.presentation_id)
        assert presentation.status == "draft"
        assert len(presentation.slides) == 3
        assert "timed out" in presentation.error_message

    @pytest.mark.asyncio
    async def test_client_disconnect_finalizes(
        self, db, owner, project, deck, controller_factory, fake_generator
    ):
        controller = controller_factory(generator=fake_generator(delay=0.05))
        job = await controller.initialize(db, owner, new_request(project, deck))

        stream = controller.stream(job)
        frames = []
        async for frame in stream:
            frames.append(frame)
            if len(events_of(parse_frames(frames), "progress")) == 2:
                break
        await stream.aclose()

        presentation = load(db, job.presentation_id)
        assert presentation.status == "draft"
        assert [s["slideNumber"] for s in presentation.slides] == [1, 2]
        assert "Client disconnected" in presentation.error_message
        assert controller.state is SessionState.DRAFT

    @pytest.mark.asyncio
    async def test_persistence_failure_does_not_stop_stream(
        self, db, owner, project, deck, controller_factory, session_factory
    ):
        controller = controller_factory()
        job = await controller.initialize(db, owner, new_request(project, deck))

        async def broken_append(presentation_id, slide, progress):
            return False

        controller.progress_store.append_slide = broken_append
        parsed = await collect(controller, job)

        assert len(events_of(parsed, "slide_generated")) == 5
        assert parsed[-1][0] == "completed"
        # Completion writes the full slide list itself
        assert len(load(db, job.presentation_id).slides) == 5


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_heartbeats_during_slow_generation(
        self, db, owner, project, deck, controller_factory, test_settings, fake_generator
    ):
        settings = test_settings.model_copy(update={"sse_heartbeat_seconds": 0.05})
        controller = controller_factory(settings=settings, generator=fake_generator(delay=0.08))
        job = await controller.initialize(db, owner, new_request(project, deck))
        parsed = await collect(controller, job)

        comments = [data for event, data in parsed if event == "comment"]
        assert len(comments) >= 3
        assert all(c.startswith("heartbeat ") for c in comments)

        terminal_index = next(i for i, (event, _) in enumerate(parsed) if event == "completed")
        assert terminal_index == len(parsed) - 1

    @pytest.mark.asyncio
    async def test_error_is_last_frame_with_fast_heartbeat(
        self, db, owner, project, deck, controller_factory, test_settings, fake_generator
    ):
        settings = test_settings.model_copy(update={"sse_heartbeat_seconds": 0.02})
        controller = controller_factory(
            settings=settings, generator=fake_generator(delay=0.05, fail_on={3})
        )
        job = await controller.initialize(db, owner, new_request(project, deck))
        parsed = await collect(controller, job)

        assert parsed[-1][0] == "error"


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_does_not_regenerate(
        self, db, owner, project, deck, controller_factory, fake_generator
    ):
        saved = seed_presentation(db, owner, project, deck, "draft", [1, 2, 3])
        generator = fake_generator()
        controller = controller_factory(generator=generator)

        job = await controller.initialize(
            db,
            owner,
            new_request(project, deck, resume_presentation_id=saved.id, resume_from_slide="4"),
        )
        assert load(db, saved.id).status == "generating"
        parsed = await collect(controller, job)

        assert generator.calls == [4, 5]
        connected = parsed[0][1]
        assert connected["isResuming"] is True
        assert connected["startFromSlide"] == 4
        assert connected["slidesToGenerate"] == 2

        fresh = [e for e in events_of(parsed, "slide_generated") if not e.get("restored")]
        assert [e["slideNumber"] for e in fresh] == [4, 5]
        assert [e["progress"] for e in fresh] == [80, 100]

        presentation = load(db, saved.id)
        assert presentation.status == "completed"
        assert [s["slideNumber"] for s in presentation.slides] == [1, 2, 3, 4, 5]
        assert presentation.slides[0]["title"] == "Saved 1"

    @pytest.mark.asyncio
    async def test_resume_replays_restored_slides(self, db, owner, project, deck, controller_factory):
        saved = seed_presentation(db, owner, project, deck, "draft", [1, 2, 3])
        controller = controller_factory()

        job = await controller.initialize(
            db,
            owner,
            new_request(project, deck, resume_presentation_id=saved.id, resume_from_slide="2"),
        )
        parsed = await collect(controller, job)

        restored = [e for e in events_of(parsed, "slide_generated") if e.get("restored")]
        assert [e["slideNumber"] for e in restored] == [2, 3]
        assert parsed[1][0] == "slide_generated" and parsed[1][1]["restored"] is True
        assert job.start_from_slide == 4

    @pytest.mark.asyncio
    async def test_resume_past_gap_restarts_at_prefix(
        self, db, owner, project, deck, controller_factory, fake_generator
    ):
        saved = seed_presentation(db, owner, project, deck, "failed", [1, 2, 4])
        generator = fake_generator()
        controller = controller_factory(generator=generator)

        job = await controller.initialize(
            db,
            owner,
            new_request(project, deck, resume_presentation_id=saved.id, resume_from_slide="5"),
        )
        await collect(controller, job)

        assert job.start_from_slide == 3
        assert generator.calls == [3, 4, 5]

    @pytest.mark.asyncio
    async def test_resume_of_interrupted_generating_record(
        self, db, owner, project, deck, controller_factory
    ):
        saved = seed_presentation(db, owner, project, deck, "generating", [1, 2])
        controller = controller_factory()

        job = await controller.initialize(
            db,
            owner,
            new_request(project, deck, resume_presentation_id=saved.id, resume_from_slide="3"),
        )
        parsed = await collect(controller, job)
        assert parsed[-1][0] == "completed"

    @pytest.mark.asyncio
    async def test_resume_zero_starts_new_presentation(self, db, owner, project, deck, controller_factory):
        saved = seed_presentation(db, owner, project, deck, "draft", [1, 2])
        controller = controller_factory()

        job = await controller.initialize(
            db,
            owner,
            new_request(project, deck, resume_presentation_id=saved.id, resume_from_slide="0"),
        )
        assert job.presentation_id != saved.id
        assert job.is_resuming is False
        await collect(controller, job)

    @pytest.mark.asyncio
    async def test_resume_completed_presentation_rejected(
        self, db, owner, project, deck, controller_factory
    ):
        saved = seed_presentation(db, owner, project, deck, "completed", [1, 2, 3, 4, 5])
        controller = controller_factory()

        with pytest.raises(InvalidStatusTransition):
            await controller.initialize(
                db,
                owner,
                new_request(project, deck, resume_presentation_id=saved.id, resume_from_slide="2"),
            )
        db.rollback()
        assert load(db, saved.id).status == "completed"

    @pytest.mark.asyncio
    async def test_resume_other_users_presentation(
        self, db, owner, other_user, project, deck, controller_factory
    ):
        saved = seed_presentation(db, owner, project, deck, "draft", [1])
        other_project = type(project)(name="Theirs", user_id=other_user.id)
        db.add(other_project)
        db.commit()
        controller = controller_factory()

        with pytest.raises((AccessDeniedError, EntityNotFound)):
            await controller.initialize(
                db,
                other_user,
                StreamRequest(
                    project_id=other_project.id,
                    deck_structure_id=deck.id,
                    resume_presentation_id=saved.id,
                    resume_from_slide="2",
                ),
            )

    @pytest.mark.asyncio
    async def test_resume_unknown_presentation(self, db, owner, project, deck, controller_factory):
        controller = controller_factory()
        with pytest.raises(EntityNotFound):
            await controller.initialize(
                db,
                owner,
                new_request(project, deck, resume_presentation_id="missing", resume_from_slide="2"),
            )


class TestInitializeRejections:
    @pytest.mark.asyncio
    async def test_missing_ids(self, db, owner, controller_factory):
        with pytest.raises(ValidationError):
            await controller_factory().initialize(db, owner, StreamRequest(None, None))

    @pytest.mark.asyncio
    async def test_project_not_found(self, db, owner, deck, controller_factory):
        with pytest.raises(EntityNotFound):
            await controller_factory().initialize(db, owner, StreamRequest("missing", deck.id))

    @pytest.mark.asyncio
    async def test_project_of_another_user(self, db, other_user, project, deck, controller_factory):
        with pytest.raises(AccessDeniedError):
            await controller_factory().initialize(db, other_user, new_request(project, deck))

    @pytest.mark.asyncio
    async def test_empty_deck(self, db, owner, project, controller_factory):
        empty = DeckStructure(user_id=owner.id, funnel_project_id=project.id, title="Empty", slides=[])
        db.add(empty)
        db.commit()
        with pytest.raises(ValidationError):
            await controller_factory().initialize(db, owner, new_request(project, empty))

    @pytest.mark.asyncio
    async def test_quota_reached(self, db, owner, project, deck, controller_factory):
        for status in ("completed", "draft", "generating"):
            seed_presentation(db, owner, project, deck, status, [1])

        with pytest.raises(PresentationLimitError) as exc_info:
            await controller_factory().initialize(db, owner, new_request(project, deck))
        assert exc_info.value.status_code == 429
        assert db.query(Presentation).count() == 3

    @pytest.mark.asyncio
    async def test_failed_presentations_do_not_count(self, db, owner, project, deck, controller_factory):
        for status in ("completed", "draft", "failed"):
            seed_presentation(db, owner, project, deck, status, [])

        controller = controller_factory()
        job = await controller.initialize(db, owner, new_request(project, deck))
        await collect(controller, job)

    @pytest.mark.asyncio
    async def test_quota_disabled(self, db, owner, project, deck, controller_factory, test_settings):
        for status in ("completed", "draft", "generating"):
            seed_presentation(db, owner, project, deck, status, [1])
        settings = test_settings.model_copy(update={"presentation_limit_enabled": False})

        controller = controller_factory(settings=settings)
        job = await controller.initialize(db, owner, new_request(project, deck))
        await collect(controller, job)

    @pytest.mark.asyncio
    async def test_rate_limited(
        self, db, owner, project, deck, test_settings, session_factory, fake_generator
    ):
        from funnel_presentations.services.progress_store import ProgressStore
        from funnel_presentations.services.slide_orchestrator import SlideGenerationOrchestrator
        from funnel_presentations.services.stream_session import StreamSessionController

        controller = StreamSessionController(
            orchestrator=SlideGenerationOrchestrator(fake_generator(), None, test_settings),
            progress_store=ProgressStore(session_factory),
            rate_limiter=RateLimiter(max_requests=1, window_seconds=60),
            settings=test_settings,
            session_factory=session_factory,
        )
        job = await controller.initialize(db, owner, new_request(project, deck))
        await collect(controller, job)

        with pytest.raises(RateLimitedError) as exc_info:
            await controller.initialize(db, owner, new_request(project, deck))
        assert exc_info.value.context["retry_after"] >= 1

        # A malformed resume counts as a new request
        with pytest.raises(RateLimitedError):
            await controller.initialize(
                db,
                owner,
                new_request(project, deck, resume_presentation_id="anything", resume_from_slide="x"),
            )

        saved = seed_presentation(db, owner, project, deck, "draft", [1, 2])
        resumed = await controller.initialize(
            db,
            owner,
            new_request(project, deck, resume_presentation_id=saved.id, resume_from_slide="3"),
        )
        assert resumed.is_resuming is True
        await collect(controller, resumed)


class TestNoFramesAfterTerminal:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("fail_on", [(), (2,)])
    async def test_single_terminal_event_is_last(
        self, db, owner, project, deck, controller_factory, fail_on, fake_generator
    ):
        controller = controller_factory(generator=fake_generator(fail_on=fail_on))
        job = await controller.initialize(db, owner, new_request(project, deck))
        parsed = await collect(controller, job)

        terminal = [i for i, (event, _) in enumerate(parsed) if event in ("completed", "error")]
        assert terminal == [len(parsed) - 1]
