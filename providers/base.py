"""
Base provider interface for vision model adapters.

Defines the contract that all provider implementations must follow.
"""

from abc import ABC, abstractmethod


class BaseVisionProvider(ABC):
    """
    Abstract base class for vision model providers.

    All providers must implement infer(), list_models() and health_check().
    Providers should set id and name class/instance attributes.
    """

    id: str  # Unique identifier (e.g., "gemini")
    name: str  # Human readable name (e.g., "Google Gemini")

    @abstractmethod
    def infer(self, image: bytes, mime_type: str, instructions: str) -> str:
        """
        Runs the model on one image with the given instructions.

        Args:
            image: Raw image bytes
            mime_type: Image MIME type (e.g., "image/png")
            instructions: Prompt text

        Returns:
            str: Raw model output text

        Raises:
            ModelCallError: If the call fails for any reason
        """
        pass

    @abstractmethod
    def list_models(self) -> list[str]:
        """
        Returns a list of model identifiers available on this provider.

        Returns:
            list[str]: Available model names/IDs
        """
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """
        Quick check to see if provider is usable.

        Returns:
            bool: True if provider is configured/reachable, False otherwise
        """
        pass

    def rotate_key(self) -> None:
        """Switch to the next credential. Providers with a single key do nothing."""
        return None
