"""Service factories for wiring generation providers from settings."""

import logging
from typing import TYPE_CHECKING

from funnel_presentations.config import Settings

if TYPE_CHECKING:
    from funnel_presentations.services.image_generator import SlideImageGenerator
    from funnel_presentations.services.slide_orchestrator import SlideGenerationOrchestrator

logger = logging.getLogger(__name__)


def get_image_generator(settings: Settings) -> "SlideImageGenerator | None":
    """Image sub-generator, or None when no image provider is configured.

    Without an API key slides are generated without images.
    """
    if not settings.openai_api_key:
        logger.warning("openai_api_key not configured; slides will be generated without images")
        return None

    from funnel_presentations.services.image_generator import (
        OpenAIImageProvider,
        SlideImageGenerator,
    )
    from funnel_presentations.services.object_store import LocalObjectStore

    store = LocalObjectStore(
        media_dir=settings.media_dir,
        bucket=settings.media_bucket,
        base_url=settings.media_base_url,
    )
    logger.info(f"Creating SlideImageGenerator: {settings.image_model} -> {settings.media_dir}")
    return SlideImageGenerator(OpenAIImageProvider(settings), store, settings)


def get_orchestrator(settings: Settings) -> "SlideGenerationOrchestrator":
    from funnel_presentations.services.slide_orchestrator import SlideGenerationOrchestrator
    from funnel_presentations.services.text_generator import SlideTextGenerator

    logger.info(f"Creating SlideTextGenerator: {settings.chat_model} @ {settings.ollama_base_url}")
    return SlideGenerationOrchestrator(
        text_generator=SlideTextGenerator(settings),
        image_generator=get_image_generator(settings),
        settings=settings,
    )
