"""Pytest configuration and fixtures."""

import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from funnel_presentations.api.presentations import get_stream_controller
from funnel_presentations.config import Settings
from funnel_presentations.core.exceptions import TextGenerationError
from funnel_presentations.core.rate_limit import RateLimiter
from funnel_presentations.core.security import create_access_token
from funnel_presentations.db.database import Base, get_db
from funnel_presentations.db.models import (
    BrandDesign,
    BusinessProfile,
    DeckStructure,
    FunnelProject,
    User,
)
from funnel_presentations.main import app
from funnel_presentations.schemas.presentation import Slide
from funnel_presentations.services.progress_store import ProgressStore
from funnel_presentations.services.slide_orchestrator import SlideGenerationOrchestrator
from funnel_presentations.services.stream_session import StreamSessionController
from funnel_presentations.services.text_generator import determine_layout_type

# Test database - in-memory SQLite with StaticPool for connection sharing
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeTextGenerator:
    """Deterministic slide text generator.

    ``fail_on`` slide numbers raise TextGenerationError; ``delay`` makes
    each slide take that many seconds.
    """

    def __init__(self, fail_on=(), delay: float = 0, with_image_prompt: bool = False, timeout: bool = False):
        self.fail_on = set(fail_on)
        self.delay = delay
        self.with_image_prompt = with_image_prompt
        self.timeout = timeout
        self.calls: list[int] = []

    async def generate_slide(self, spec, customization, business=None, total_slides=None):
        self.calls.append(spec.slide_number)
        if self.delay:
            await asyncio.sleep(self.delay)
        if spec.slide_number in self.fail_on:
            raise TextGenerationError(
                f"Failed to generate content for slide {spec.slide_number}",
                slide_number=spec.slide_number,
                is_timeout=self.timeout,
            )
        return Slide(
            slide_number=spec.slide_number,
            title=f"Generated {spec.title}",
            content=["First point", "Second point", "Third point"],
            speaker_notes=f"Talk about {spec.title}",
            layout_type=determine_layout_type(spec, spec.slide_number - 1, total_slides or 0),
            section=spec.section,
            image_prompt=f"Visual for {spec.title}" if self.with_image_prompt else None,
        )


@pytest.fixture(scope="function")
def db():
    """Fresh schema per test; sessions from TestingSessionLocal share the connection."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db):
    return TestingSessionLocal


@pytest.fixture(scope="function")
def test_settings() -> Settings:
    """Settings with fast timings for tests."""
    return Settings(
        slide_delay_seconds=0,
        sse_heartbeat_seconds=20,
        stream_timeout_seconds=30,
        retry_base_delay_seconds=0.01,
        presentation_limit=3,
        presentation_limit_enabled=True,
    )


@pytest.fixture(scope="function")
def limiter() -> RateLimiter:
    return RateLimiter(max_requests=10, window_seconds=60)


@pytest.fixture(scope="function")
def text_generator() -> FakeTextGenerator:
    return FakeTextGenerator()


@pytest.fixture
def fake_generator():
    """FakeTextGenerator class, for tests that need custom failure or timing."""
    return FakeTextGenerator


@pytest.fixture(scope="function")
def controller_factory(test_settings, limiter, text_generator, session_factory):
    """Builds stream controllers wired to the test database."""

    def build(settings: Settings | None = None, generator=None, image_generator=None):
        settings = settings or test_settings
        orchestrator = SlideGenerationOrchestrator(
            generator or text_generator, image_generator, settings
        )
        return StreamSessionController(
            orchestrator=orchestrator,
            progress_store=ProgressStore(session_factory),
            rate_limiter=limiter,
            settings=settings,
            session_factory=session_factory,
        )

    return build


@pytest.fixture(scope="function")
def client(db, controller_factory):
    """Create test client with database and generation overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass  # Do not close - managed by db fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stream_controller] = lambda: controller_factory()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def owner(db) -> User:
    """Create the user who owns the project."""
    user = User(email="owner@test.com", display_name="Funnel Owner", is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def other_user(db) -> User:
    """Create a user who owns nothing."""
    user = User(email="other@test.com", display_name="Someone Else", is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def owner_token(owner) -> str:
    """Get JWT token for the owner."""
    return create_access_token(owner.id, owner.email)


@pytest.fixture(scope="function")
def owner_headers(owner_token) -> dict:
    """Authorization headers for the owner."""
    return {"Authorization": f"Bearer {owner_token}"}


@pytest.fixture(scope="function")
def other_headers(other_user) -> dict:
    """Authorization headers for a user without access."""
    token = create_access_token(other_user.id, other_user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def project(db, owner) -> FunnelProject:
    """Create a funnel project with brand and business context."""
    funnel = FunnelProject(name="Webinar Funnel", user_id=owner.id)
    db.add(funnel)
    db.flush()
    db.add(
        BusinessProfile(
            funnel_project_id=funnel.id,
            business_name="Acme Coaching",
            target_audience="Busy founders",
            main_offer="12-week accelerator",
        )
    )
    db.add(BrandDesign(funnel_project_id=funnel.id, brand_name="Acme", primary_color="#1E40AF"))
    db.commit()
    db.refresh(funnel)
    return funnel


@pytest.fixture(scope="function")
def deck(db, owner, project) -> DeckStructure:
    """Create a five-slide deck outline."""
    structure = DeckStructure(
        user_id=owner.id,
        funnel_project_id=project.id,
        title="Webinar Deck",
        slides=[
            {"title": f"Topic {i}", "description": f"Cover topic {i}", "section": "Body"}
            for i in range(1, 6)
        ],
    )
    db.add(structure)
    db.commit()
    db.refresh(structure)
    return structure
