"""
Google Gemini vision provider adapter.

Supports several API keys with round-robin rotation and maps SDK failures
onto ModelCallError / QuotaExhaustedError.
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import List, Optional

import google.generativeai as genai

from providers.base import BaseVisionProvider
from services.exceptions import ModelCallError, QuotaExhaustedError

logger = logging.getLogger(__name__)


@dataclass
class GeminiModel:
    """Gemini model configuration."""
    id: str
    display_name: str
    api_name: str


# Vision-capable Gemini models
GEMINI_MODELS = [
    GeminiModel(id="gemini-flash", display_name="Gemini 2.0 Flash", api_name="gemini-2.0-flash"),
    GeminiModel(id="gemini-flash-lite", display_name="Gemini 2.0 Flash-Lite", api_name="gemini-2.0-flash-lite"),
    GeminiModel(id="gemini-1.5-flash", display_name="Gemini 1.5 Flash", api_name="gemini-1.5-flash"),
]

DEFAULT_API_MODEL = "gemini-2.0-flash"

# Substrings of SDK errors that mean the key ran out of quota
QUOTA_ERROR_MARKERS = ("429", "quota", "rate limit", "rate_limit", "resource_exhausted", "resource has been exhausted")


def parse_api_keys(raw: Optional[str]) -> List[str]:
    """Split a comma-separated key list, dropping blanks."""
    if not raw:
        return []
    return [key.strip() for key in raw.split(",") if key.strip()]


def mask_key(key: Optional[str]) -> Optional[str]:
    if not key:
        return None
    return f"...{key[-4:]}" if len(key) > 4 else "****"


class KeyRing:
    """
    Round-robin pointer over API keys.

    Shared by every in-flight request. rotate() is one locked increment, so
    concurrent rotations at worst land on the same next key.
    """

    def __init__(self, keys: List[str]):
        self._keys = list(keys)
        self._index = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def index(self) -> int:
        return self._index

    def current(self) -> Optional[str]:
        if not self._keys:
            return None
        with self._lock:
            return self._keys[self._index % len(self._keys)]

    def rotate(self) -> Optional[str]:
        """Advance to the next key and return it."""
        if not self._keys:
            return None
        with self._lock:
            self._index = (self._index + 1) % len(self._keys)
            key = self._keys[self._index]
        logger.info(f"🔄 Rotated to Gemini key {self._index + 1}/{len(self._keys)}")
        return key


class GeminiVisionProvider(BaseVisionProvider):
    """
    Adapter for the Google Gemini API with API key rotation.

    Keys come from the constructor or from GEMINI_KEYS (comma-separated),
    falling back to GOOGLE_API_KEY.
    """

    def __init__(self, api_keys: Optional[List[str]] = None, model_name: str = DEFAULT_API_MODEL):
        """
        Initialize Gemini provider.

        Args:
            api_keys: Optional list of API keys. Falls back to env vars.
            model_name: API model name (e.g., "gemini-2.0-flash")
        """
        if api_keys is None:
            api_keys = parse_api_keys(os.getenv("GEMINI_KEYS") or os.getenv("GOOGLE_API_KEY"))
        self.keys = KeyRing(api_keys)
        self.model_name = model_name

        self.id = "gemini"
        self.name = "Google Gemini"

        if len(self.keys):
            self._configure(self.keys.current())
            logger.info(f"✅ Gemini provider ready with key 1/{len(self.keys)} ({model_name})")
        else:
            logger.warning("⚠️ No Gemini API keys configured")

    def _configure(self, api_key: str):
        """Point the genai library at the given key."""
        genai.configure(api_key=api_key)

    @property
    def api_key(self) -> Optional[str]:
        """Get current API key (masked)."""
        return mask_key(self.keys.current())

    def rotate_key(self) -> None:
        key = self.keys.rotate()
        if key:
            self._configure(key)

    def list_models(self) -> List[str]:
        """
        Returns available Gemini models.

        Returns:
            List of model display names
        """
        return [m.display_name for m in GEMINI_MODELS]

    def infer(self, image: bytes, mime_type: str, instructions: str) -> str:
        """
        Run Gemini on one image.

        Args:
            image: Raw image bytes
            mime_type: Image MIME type
            instructions: Prompt text

        Returns:
            Model output text

        Raises:
            QuotaExhaustedError: If a 429 / quota error is received
            ModelCallError: For any other failure, including empty answers
        """
        if not len(self.keys):
            raise ModelCallError("Gemini API key not configured. Set GEMINI_KEYS.")

        try:
            model = genai.GenerativeModel(self.model_name)
            response = model.generate_content(
                [instructions, {"mime_type": mime_type, "data": image}]
            )
            text = response.text
        except Exception as e:
            error_str = str(e).lower()

            # Check for quota/rate limit errors
            if any(marker in error_str for marker in QUOTA_ERROR_MARKERS):
                logger.warning(f"Gemini quota exhausted on key {self.api_key}: {e}")
                raise QuotaExhaustedError(self.model_name, str(e)) from e

            logger.error(f"Gemini generation error: {e}")
            raise ModelCallError(f"Gemini call failed: {e}") from e

        if not text or not text.strip():
            raise ModelCallError("Gemini returned an empty response")

        logger.info(f"Gemini ({self.model_name}) response: {len(text)} chars")
        logger.debug(f"Gemini raw response: {text}")
        return text

    def health_check(self) -> bool:
        """
        Check if Gemini is configured.

        Returns:
            True if at least one API key is set
        """
        return bool(len(self.keys))
