"""Slide Generation Orchestrator.

Turns an ordered list of slide specs into finished slides, strictly one at a
time:
1. Generate slide text (mandatory)
2. Generate the slide image when the text produced an image prompt (best effort)
3. Hand the finished slide to the caller's callback and wait for it
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from funnel_presentations.config import Settings, get_settings
from funnel_presentations.core.exceptions import SlideGenerationError, StreamTimeoutError
from funnel_presentations.schemas.presentation import (
    BrandContext,
    BusinessContext,
    PresentationCustomization,
    Slide,
    SlideSpec,
)
from funnel_presentations.services.protocols import (
    SlideImageGeneratorProtocol,
    SlideTextGeneratorProtocol,
)

logger = logging.getLogger(__name__)

SlideCallback = Callable[[Slide, int], Awaitable[None]]


def compute_progress(completed_count: int, total_expected: int) -> int:
    """Whole percent of ``total_expected`` done, clamped to [0, 100]."""
    if total_expected <= 0:
        return 100 if completed_count > 0 else 0
    percent = round(completed_count / total_expected * 100)
    return max(0, min(100, percent))


class SlideGenerationOrchestrator:
    """Generates slides sequentially and reports each one through a callback."""

    def __init__(
        self,
        text_generator: SlideTextGeneratorProtocol,
        image_generator: SlideImageGeneratorProtocol | None = None,
        settings: Settings | None = None,
    ):
        self.text_generator = text_generator
        self.image_generator = image_generator
        self.settings = settings or get_settings()

    async def _attach_image(
        self,
        slide: Slide,
        presentation_id: str,
        customization: PresentationCustomization,
        brand: BrandContext | None,
    ) -> Slide:
        if not slide.image_prompt or slide.image_url or self.image_generator is None:
            return slide

        image_url = await self.image_generator.generate(
            presentation_id=presentation_id,
            slide_number=slide.slide_number,
            image_prompt=slide.image_prompt,
            brand_color=brand.primary_color if brand else None,
            image_style=customization.image_style,
        )
        if not image_url:
            return slide
        return slide.model_copy(
            update={"image_url": image_url, "image_generated_at": datetime.now(UTC)}
        )

    async def generate(
        self,
        specs: list[SlideSpec],
        *,
        presentation_id: str,
        customization: PresentationCustomization,
        on_slide: SlideCallback,
        business: BusinessContext | None = None,
        brand: BrandContext | None = None,
        total_expected: int | None = None,
        completed_offset: int = 0,
        timeout_seconds: float | None = None,
    ) -> list[Slide]:
        """Generate ``specs`` in order.

        Args:
            specs: Slides to generate (the pending tail when resuming).
            presentation_id: Owning presentation, used for image storage paths.
            customization: Style options.
            on_slide: Awaited after each slide with the slide and running
                progress percent.
            business: Optional business profile.
            brand: Optional brand palette.
            total_expected: Deck length for progress; falls back to
                ``completed_offset + len(specs)``.
            completed_offset: Slides already done before this run.
            timeout_seconds: Overall time budget; no new slide is started once
                it is spent.

        Returns:
            Slides generated in this run.

        Raises:
            SlideGenerationError: Slide text failed, carrying the slides
                completed before it.
        """
        total = total_expected or (completed_offset + len(specs))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds if timeout_seconds else None
        completed: list[Slide] = []

        logger.info(
            f"Generating {len(specs)} slides for presentation {presentation_id}",
            extra={
                "presentation_id": presentation_id,
                "slides_to_generate": len(specs),
                "total_expected": total,
                "completed_offset": completed_offset,
            },
        )

        for index, spec in enumerate(specs):
            if deadline is not None and loop.time() >= deadline:
                raise SlideGenerationError(
                    spec.slide_number,
                    completed,
                    StreamTimeoutError(timeout_seconds),
                )

            try:
                slide = await self.text_generator.generate_slide(
                    spec, customization, business=business, total_slides=total
                )
            except Exception as e:
                logger.error(
                    f"Slide {spec.slide_number} text generation failed: {e}",
                    extra={
                        "presentation_id": presentation_id,
                        "slide_number": spec.slide_number,
                        "slides_generated": len(completed),
                    },
                )
                raise SlideGenerationError(spec.slide_number, completed, e) from e

            slide = await self._attach_image(slide, presentation_id, customization, brand)
            completed.append(slide)

            progress = compute_progress(completed_offset + len(completed), total)
            await on_slide(slide, progress)

            logger.info(
                f"Slide {slide.slide_number} generated",
                extra={
                    "presentation_id": presentation_id,
                    "slide_number": slide.slide_number,
                    "progress": progress,
                    "has_image": slide.image_url is not None,
                },
            )

            if index < len(specs) - 1 and self.settings.slide_delay_seconds > 0:
                await asyncio.sleep(self.settings.slide_delay_seconds)

        return completed
