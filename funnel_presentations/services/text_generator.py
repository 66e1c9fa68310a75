"""Slide text generation via Ollama.

Expands one deck outline entry into a titled slide with bullets, speaker
notes and an image prompt. This is the mandatory step of slide generation:
failures are retried within the configured budget and then propagated.
"""

import json
import logging
import re

import httpx
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_ollama import ChatOllama

from funnel_presentations.config import Settings, get_settings
from funnel_presentations.core.exceptions import TextGenerationError
from funnel_presentations.core.retry import RetryDecision, with_retry, with_timeout
from funnel_presentations.schemas.presentation import (
    BusinessContext,
    LayoutType,
    PresentationCustomization,
    Slide,
    SlideSpec,
    TextDensity,
)

logger = logging.getLogger(__name__)

BULLET_COUNTS: dict[str, tuple[int, int]] = {
    "minimal": (2, 3),
    "balanced": (3, 5),
    "detailed": (5, 7),
}

EMPHASIS_GUIDANCE = {
    "text": "Focus on clear, impactful text",
    "visuals": "Keep text minimal, suggest strong visuals",
    "balanced": "Balance text and visual elements",
}

SYSTEM_PROMPT = (
    "You are an expert presentation designer creating content for a professional "
    "business presentation. Generate clear, compelling content that engages the "
    "audience. Always respond with valid JSON."
)

SLIDE_PROMPT = """Generate compelling slide content for a presentation slide.
{business_context}
Style Guidelines:
- Text Density: {text_density} ({min_bullets}-{max_bullets} bullet points per slide)
- Visual Style: {visual_style}
- Emphasis: {emphasis}

Slide Information:
- Title: {title}
- Description/Purpose: {description}
- Section: {section}

Generate the following for this slide:
1. A refined title (keep it concise and impactful)
2. {min_bullets}-{max_bullets} bullet points that support the slide's purpose
3. Speaker notes (2-3 sentences of what the presenter should say)
4. An image prompt describing a relevant visual (for AI image generation)

Respond with ONLY valid JSON in this exact format:
{{
  "title": "Refined slide title",
  "content": ["Bullet point 1", "Bullet point 2"],
  "speakerNotes": "Speaker notes text",
  "imagePrompt": "Description for AI image generation"
}}"""

_SECTION_WORDS = ("section", "part")
_QUOTE_WORDS = ("quote", "testimonial")
_STATISTICS_WORDS = ("statistic", "number", "data")
_COMPARISON_WORDS = ("vs", "comparison", "before", "after")
_PROCESS_WORDS = ("step", "process", "how to")


def get_bullet_count(text_density: TextDensity) -> tuple[int, int]:
    """(min, max) bullets per slide for a text density."""
    return BULLET_COUNTS.get(text_density, BULLET_COUNTS["balanced"])


def determine_layout_type(spec: SlideSpec, index: int, total: int) -> LayoutType:
    """Pick a layout from slide position and title keywords.

    The first slide is always ``title`` and the last is ``cta``.
    """
    title = spec.title.lower()
    section = spec.section.lower()

    if index == 0:
        return "title"
    if index == total - 1:
        return "cta"
    if any(word in title for word in _SECTION_WORDS) or (section and title == section):
        return "section"
    if any(word in title for word in _QUOTE_WORDS):
        return "quote"
    if any(word in title for word in _STATISTICS_WORDS):
        return "statistics"
    if any(word in title for word in _COMPARISON_WORDS):
        return "comparison"
    if any(word in title for word in _PROCESS_WORDS):
        return "process"
    return "bullets"


def _format_business_context(business: BusinessContext | None) -> str:
    if business is None:
        return ""
    return (
        "\nBusiness Context:\n"
        f"- Business Name: {business.business_name or 'Not specified'}\n"
        f"- Target Audience: {business.target_audience or 'Not specified'}\n"
        f"- Main Offer: {business.main_offer or 'Not specified'}\n"
        f"- Unique Mechanism: {business.unique_mechanism or 'Not specified'}\n"
        f"- Brand Voice: {business.brand_voice or 'Professional and engaging'}\n"
    )


def build_slide_messages(
    spec: SlideSpec,
    customization: PresentationCustomization,
    business: BusinessContext | None = None,
) -> list[BaseMessage]:
    """System + user message list for one slide."""
    min_bullets, max_bullets = get_bullet_count(customization.text_density)
    prompt = SLIDE_PROMPT.format(
        business_context=_format_business_context(business),
        text_density=customization.text_density,
        min_bullets=min_bullets,
        max_bullets=max_bullets,
        visual_style=customization.visual_style,
        emphasis=EMPHASIS_GUIDANCE[customization.emphasis_preference],
        title=spec.title,
        description=spec.description,
        section=spec.section,
    )
    return [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=prompt)]


def parse_slide_json(content: str) -> dict:
    """Extract the JSON object from a model response.

    Raises:
        ValueError: If the response is empty or holds no JSON object.
    """
    if not content or not content.strip():
        raise ValueError("No content generated")

    json_match = re.search(r"\{[\s\S]*\}", content)
    if not json_match:
        raise ValueError(f"Could not parse slide JSON from response: {content[:200]}")

    try:
        data = json.loads(json_match.group())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in slide response: {e}") from None

    if not isinstance(data, dict):
        raise ValueError("Slide response is not a JSON object")
    return data


def classify_text_error(error: BaseException) -> RetryDecision:
    """Client errors from Ollama (bad model name, bad request) are terminal."""
    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
    else:
        status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int) and 400 <= status_code < 500 and status_code != 429:
        return RetryDecision.TERMINAL
    return RetryDecision.RETRYABLE


class SlideTextGenerator:
    """Generates slide copy with ChatOllama in JSON mode."""

    def __init__(self, settings: Settings | None = None, llm: ChatOllama | None = None):
        self.settings = settings or get_settings()
        self.llm = llm or ChatOllama(
            model=self.settings.chat_model,
            base_url=self.settings.ollama_base_url,
            temperature=self.settings.text_temperature,
            num_predict=self.settings.text_max_tokens,
            format="json",
        )

    async def _request(self, messages: list[BaseMessage]) -> dict:
        response = await self.llm.ainvoke(messages)
        content = response.content if isinstance(response.content, str) else ""
        return parse_slide_json(content)

    async def generate_slide(
        self,
        spec: SlideSpec,
        customization: PresentationCustomization,
        business: BusinessContext | None = None,
        total_slides: int | None = None,
    ) -> Slide:
        """Generate one slide.

        Args:
            spec: Outline entry to expand.
            customization: Style options.
            business: Optional business profile for grounding.
            total_slides: Deck length, used to place the closing ``cta`` layout.

        Returns:
            Slide without image fields set.

        Raises:
            TextGenerationError: When every attempt failed.
        """
        messages = build_slide_messages(spec, customization, business)
        timeout = self.settings.text_generation_timeout_seconds

        async def attempt(_: int) -> dict:
            return await with_timeout(self._request(messages), timeout, "Slide text generation")

        try:
            generated = await with_retry(
                attempt,
                max_attempts=self.settings.text_generation_max_attempts,
                classify=classify_text_error,
                base_delay=self.settings.retry_base_delay_seconds,
                operation_name="Slide text generation",
                log_context={"slide_number": spec.slide_number},
            )
        except Exception as e:
            raise TextGenerationError(
                f"Failed to generate content for slide {spec.slide_number}: {e}",
                slide_number=spec.slide_number,
                is_timeout=isinstance(e, TimeoutError),
            ) from e

        content = generated.get("content")
        if not isinstance(content, list) or not content:
            content = [spec.description] if spec.description else []
        image_prompt = generated.get("imagePrompt")

        return Slide(
            slide_number=spec.slide_number,
            title=str(generated.get("title") or spec.title),
            content=[str(item) for item in content],
            speaker_notes=str(generated.get("speakerNotes") or ""),
            layout_type=determine_layout_type(spec, spec.slide_number - 1, total_slides or 0),
            section=spec.section,
            image_prompt=str(image_prompt) if image_prompt else None,
        )
