"""Slide image generation (best effort).

Pipeline per slide: compose a styled prompt, ask the image provider for a
temporary URL, download the bytes, upload them to the object store and
return the durable public URL. Any failure after the retry budget yields
None so the slide ships without an image.
"""

import logging
import time

import httpx
import openai
from openai import AsyncOpenAI

from funnel_presentations.config import Settings, get_settings
from funnel_presentations.core.exceptions import EmptyImageResultError, ImageDownloadError
from funnel_presentations.core.retry import RetryDecision, with_retry, with_timeout
from funnel_presentations.schemas.presentation import ImageStyle
from funnel_presentations.services.protocols import ImageProviderProtocol, ObjectStoreProtocol

logger = logging.getLogger(__name__)

IMAGE_STYLE_HINTS: dict[str, str] = {
    "photography": "Photorealistic photography style.",
    "illustration": "Flat digital illustration style.",
    "abstract": "Abstract, artistic style.",
    "icons": "Simple iconographic style.",
}

# 408/409/429 are transient even though they are 4xx
_RETRYABLE_CLIENT_STATUSES = {408, 409, 429}


def compose_image_prompt(
    image_prompt: str,
    brand_color: str | None = None,
    image_style: ImageStyle | None = None,
) -> str:
    """Prefix the slide's image prompt with presentation style guidance."""
    parts = [
        "Professional business presentation slide image.",
        f"Color scheme inspired by {brand_color}." if brand_color else "",
        IMAGE_STYLE_HINTS.get(image_style or "", ""),
        "Clean, modern design suitable for presentations.",
        "High quality, no text overlays.",
    ]
    style_context = " ".join(part for part in parts if part)
    return f"{style_context} {image_prompt}"


def build_storage_path(presentation_id: str, slide_number: int, timestamp_ms: int | None = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"presentations/{presentation_id}/slide-{slide_number}-{timestamp_ms}.png"


def classify_image_error(error: BaseException) -> RetryDecision:
    """Empty results and client-side rejections (content policy, auth) are terminal."""
    if isinstance(error, EmptyImageResultError):
        return RetryDecision.TERMINAL
    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        if 400 <= status < 500 and status not in _RETRYABLE_CLIENT_STATUSES:
            return RetryDecision.TERMINAL
    return RetryDecision.RETRYABLE


class OpenAIImageProvider:
    """DALL-E image generation through the openai SDK."""

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None):
        self.settings = settings or get_settings()
        self.client = client or AsyncOpenAI(api_key=self.settings.openai_api_key, max_retries=0)

    async def generate(self, prompt: str) -> str | None:
        response = await self.client.images.generate(
            model=self.settings.image_model,
            prompt=prompt,
            n=1,
            size=self.settings.image_size,
            quality=self.settings.image_quality,
            style=self.settings.image_style,
        )
        data = response.data or []
        if not data:
            return None
        return data[0].url or None


class SlideImageGenerator:
    """Generates, downloads and stores one slide image."""

    def __init__(
        self,
        provider: ImageProviderProtocol,
        store: ObjectStoreProtocol,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.provider = provider
        self.store = store
        self.settings = settings or get_settings()
        self.http_client = http_client

    def build_http_client(self) -> httpx.AsyncClient:
        """Client for one download, bounded by ``image_download_timeout_seconds``."""
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.image_download_timeout_seconds),
            follow_redirects=True,
        )

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise ImageDownloadError(f"Failed to download image: {e}") from e
        if not response.is_success:
            raise ImageDownloadError(f"Failed to download image: {response.status_code}")
        return response.content

    async def download(self, url: str) -> bytes:
        """Fetch a temporary image URL under the download deadline.

        Raises:
            TimeoutError: Download exceeded its deadline.
            ImageDownloadError: Transport error or non-2xx response.
        """
        timeout = self.settings.image_download_timeout_seconds
        if self.http_client is not None:
            return await with_timeout(self._fetch(self.http_client, url), timeout, "Image download")
        async with self.build_http_client() as client:
            return await with_timeout(self._fetch(client, url), timeout, "Image download")

    async def _attempt(self, prompt: str, presentation_id: str, slide_number: int) -> str:
        temp_url = await with_timeout(
            self.provider.generate(prompt),
            self.settings.image_generation_timeout_seconds,
            "Image generation",
        )
        if not temp_url:
            raise EmptyImageResultError("No image URL returned from image provider")

        data = await self.download(temp_url)
        path = build_storage_path(presentation_id, slide_number)
        await self.store.upload(path, data, "image/png")
        return self.store.public_url(path)

    async def generate(
        self,
        presentation_id: str,
        slide_number: int,
        image_prompt: str,
        brand_color: str | None = None,
        image_style: ImageStyle | None = None,
    ) -> str | None:
        """Produce a durable image URL for a slide, or None on failure.

        Never raises for provider, download or storage failures.
        """
        prompt = compose_image_prompt(image_prompt, brand_color, image_style)
        log_context = {"presentation_id": presentation_id, "slide_number": slide_number}

        try:
            url = await with_retry(
                lambda _: self._attempt(prompt, presentation_id, slide_number),
                max_attempts=self.settings.image_generation_max_attempts,
                classify=classify_image_error,
                base_delay=self.settings.retry_base_delay_seconds,
                operation_name="Slide image generation",
                log_context=log_context,
            )
        except Exception as e:
            logger.warning(
                f"Continuing slide {slide_number} without image: {e}",
                extra={**log_context, "is_timeout": isinstance(e, TimeoutError)},
            )
            return None

        logger.info(
            f"Stored image for slide {slide_number}",
            extra={**log_context, "image_url": url},
        )
        return url
