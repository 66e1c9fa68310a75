"""Service protocols (interfaces) for swappable providers.

Uses typing.Protocol for structural subtyping (duck typing with type safety).
Implementations don't need to inherit - they just need to have matching methods.
"""

from typing import Protocol

from funnel_presentations.schemas.presentation import (
    BusinessContext,
    ImageStyle,
    PresentationCustomization,
    Slide,
    SlideSpec,
)


class SlideTextGeneratorProtocol(Protocol):
    """Expands a slide spec into slide copy (mandatory step)."""

    async def generate_slide(
        self,
        spec: SlideSpec,
        customization: PresentationCustomization,
        business: BusinessContext | None = None,
        total_slides: int | None = None,
    ) -> Slide:
        """Generate title, bullets, speaker notes and an image prompt.

        Raises:
            TextGenerationError: After the retry budget is spent.
        """
        ...


class SlideImageGeneratorProtocol(Protocol):
    """Produces a durable image URL for one slide (optional step)."""

    async def generate(
        self,
        presentation_id: str,
        slide_number: int,
        image_prompt: str,
        brand_color: str | None = None,
        image_style: ImageStyle | None = None,
    ) -> str | None:
        """Return the stored image URL, or None when the image was skipped."""
        ...


class ImageProviderProtocol(Protocol):
    """Image-generation provider returning a temporary URL."""

    async def generate(self, prompt: str) -> str | None:
        """Generate one image.

        Returns:
            Temporary image URL, or None if the provider returned no image.
        """
        ...


class ObjectStoreProtocol(Protocol):
    """Durable object storage with public URLs."""

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Write ``data`` at ``path``, replacing any existing object."""
        ...

    def public_url(self, path: str) -> str:
        """Public URL for an uploaded object."""
        ...
