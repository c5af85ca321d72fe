"""
Vision model provider adapters.

Implements the Adapter/Strategy pattern so the caption generator only sees
infer(image, mime_type, instructions) -> text:
- Google Gemini (cloud API, with API key rotation)
"""

from providers.base import BaseVisionProvider

__all__ = ["BaseVisionProvider"]
