"""Presentation generation schemas.

Slides and customization travel camelCase on the wire and in the stored
JSON (``slideNumber``, ``imageUrl``); Python code uses snake_case names.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

TextDensity = Literal["minimal", "balanced", "detailed"]
VisualStyle = Literal["professional", "creative", "minimal", "bold"]
EmphasisPreference = Literal["text", "visuals", "balanced"]
AnimationLevel = Literal["none", "subtle", "moderate", "dynamic"]
ImageStyle = Literal["photography", "illustration", "abstract", "icons"]
LayoutType = Literal[
    "title",
    "section",
    "content_left",
    "content_right",
    "bullets",
    "quote",
    "statistics",
    "comparison",
    "process",
    "cta",
]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """JSON-safe camelCase dict without unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PresentationCustomization(CamelModel):
    """User-selected presentation style options."""

    text_density: TextDensity = "balanced"
    visual_style: VisualStyle = "professional"
    emphasis_preference: EmphasisPreference = "balanced"
    animation_level: AnimationLevel = "subtle"
    image_style: ImageStyle = "photography"


class DeckSlideInput(BaseModel):
    """One entry of a stored deck structure outline."""

    title: str | None = None
    description: str | None = None
    section: str | None = None


class SlideSpec(CamelModel):
    """Input description for one slide prior to AI expansion."""

    slide_number: int = Field(ge=1)
    title: str
    description: str = ""
    section: str = ""


class Slide(CamelModel):
    """One generated slide."""

    slide_number: int = Field(ge=1)
    title: str
    content: list[str] = Field(default_factory=list)
    speaker_notes: str = ""
    layout_type: LayoutType = "bullets"
    section: str = ""
    image_prompt: str | None = None
    image_url: str | None = None
    image_generated_at: datetime | None = None


class BusinessContext(BaseModel):
    """Optional business profile used to ground slide copy."""

    business_name: str | None = None
    target_audience: str | None = None
    main_offer: str | None = None
    unique_mechanism: str | None = None
    brand_voice: str | None = None


class BrandContext(BaseModel):
    """Optional brand palette; the primary color steers image style."""

    brand_name: str | None = None
    primary_color: str | None = None
    secondary_color: str | None = None
    accent_color: str | None = None


def validate_deck_slides(raw_slides: object) -> list[SlideSpec]:
    """Turn a stored deck outline into numbered slide specs.

    Entries that fail validation degrade to a placeholder spec instead of
    aborting the whole job.
    """
    entries = raw_slides if isinstance(raw_slides, list) else []
    specs: list[SlideSpec] = []
    for index, entry in enumerate(entries):
        number = index + 1
        try:
            parsed = DeckSlideInput.model_validate(entry)
        except ValidationError:
            parsed = DeckSlideInput(title=f"Slide {number}", description="", section="")
        specs.append(
            SlideSpec(
                slide_number=number,
                title=parsed.title or f"Slide {number}",
                description=parsed.description or "",
                section=parsed.section or "",
            )
        )
    return specs


class PresentationResponse(BaseModel):
    """Persisted presentation state, used by clients to reconcile before resuming."""

    id: str
    title: str
    status: str
    slides: list[dict]
    slide_count: int
    generation_progress: int
    total_expected_slides: int | None = None
    error_message: str | None = None
    funnel_project_id: str
    deck_structure_id: str | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
