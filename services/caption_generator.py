"""
Caption Generator - one image + mood in, exactly three captions out.

Wraps the vision provider with the failure policy:
- a failed model call is retried exactly once after rotating the API key
- a second failure degrades to the templated fallback
- an unparseable answer goes straight to the fallback (no retry)
- an image that cannot be downloaded degrades to the fallback without a model call

generate_captions() never raises.
"""

import asyncio
import logging
from typing import Optional, Union

from clients.image_store import fetch_image, sniff_image_type
from providers.base import BaseVisionProvider
from services.caption_extractor import (
    CaptionResult,
    PRIMARY_MARKER,
    captions_from_response,
    fallback_result,
)
from services.exceptions import ImageDownloadError, ModelCallError

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"

PROMPT_TEMPLATE = """You are an expert social media content creator and image analyst writing captions for TikTok, Instagram and Snapchat.

**STEP 1: ANALYZE THE IMAGE**
Look at the image you have been given. Note the main subject, what is happening,
the setting, the dominant colors, the lighting, the composition and the overall vibe.
Do not write generic captions: every caption must reference what you actually see.

**STEP 2: MATCH THE MOOD**
Target mood: {mood}

{marker}
Write exactly 3 captions that differ completely from each other:
- Caption 1: visual storytelling (colors, light, composition)
- Caption 2: emotional connection (how the moment feels)
- Caption 3: lifestyle and aspiration (goals, trendy language)

Each caption must match the mood, include 2-4 emojis and 3-5 hashtags,
and stay under 150 characters. No shared openings, structures or hashtag patterns.

After the {marker} heading, output ONLY a fenced JSON array of 3 strings:
```json
["caption one", "caption two", "caption three"]
```"""


def build_prompt(mood: str) -> str:
    return PROMPT_TEMPLATE.format(mood=mood, marker=PRIMARY_MARKER)


class CaptionGenerator:
    """Runs the vision model on an image and turns its answer into captions."""

    def __init__(self, provider: BaseVisionProvider):
        """
        Initialize caption generator

        Args:
            provider: Vision model adapter (e.g., GeminiVisionProvider)
        """
        self.provider = provider

    async def _load_image(self, image: Union[bytes, str]) -> bytes:
        if isinstance(image, bytes):
            return image
        loop = asyncio.get_event_loop()
        data, _ = await loop.run_in_executor(None, fetch_image, image)
        return data

    async def _infer(self, data: bytes, mime_type: str, prompt: str) -> str:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.provider.infer, data, mime_type, prompt)

    async def generate_captions(
        self,
        image: Union[bytes, str],
        mood: str,
        username: str,
        mime_type: Optional[str] = None,
    ) -> CaptionResult:
        """
        Generate 3 captions for an image.

        Args:
            image: Raw image bytes or an http(s) URL
            mood: Target mood
            username: Display name (used by the fallback hashtags)
            mime_type: Image MIME type; sniffed from the bytes when omitted

        Returns:
            CaptionResult from the model, or the templated fallback
        """
        logger.info(f"🎨 Generating captions for {username} (mood: {mood})")

        try:
            data = await self._load_image(image)
        except ImageDownloadError as e:
            logger.error(f"❌ Image download failed, using templates: {e}")
            return fallback_result(mood, username)

        mime_type = mime_type or sniff_image_type(data) or DEFAULT_MIME_TYPE
        prompt = build_prompt(mood)

        try:
            raw = await self._infer(data, mime_type, prompt)
        except ModelCallError as e:
            logger.warning(f"⚠️ Model call failed ({e}), rotating key and retrying once")
            self.provider.rotate_key()
            try:
                raw = await self._infer(data, mime_type, prompt)
                logger.info("✅ Retry succeeded with rotated key")
            except ModelCallError as retry_error:
                logger.error(f"❌ Retry failed, using templates: {retry_error}")
                return fallback_result(mood, username)

        return captions_from_response(raw, mood, username)
