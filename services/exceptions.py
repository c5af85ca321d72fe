"""
Custom exceptions for caption generation, quota and storage.
"""


class CaptionBotError(Exception):
    """Base class for all caption bot errors."""

    pass


class ModelCallError(CaptionBotError):
    """Raised when the vision model call itself fails (network, auth, upstream quota)."""

    pass


class QuotaExhaustedError(ModelCallError):
    """Raised when the model provider rejects a key with a 429 / quota error."""

    def __init__(self, model: str, message: str = None):
        self.model = model
        self.message = message or f"Quota exhausted for model {model}. Rotate keys or try again tomorrow."
        super().__init__(self.message)


class ParseFailure(CaptionBotError):
    """Raised when no extraction tier recovers 3 usable captions from a model response."""

    def __init__(self, response_length: int, message: str = None):
        self.response_length = response_length
        super().__init__(message or f"Could not extract 3 captions from a {response_length}-char response")


class StorageError(CaptionBotError):
    """Raised when the caption store cannot be read or written."""

    pass


class QuotaStoreError(StorageError):
    """Raised when the quota ledger count query fails."""

    pass


class ValidationError(CaptionBotError):
    """Raised when a caller's input (image type/size, mood) is rejected."""

    pass


class QuotaExceededError(CaptionBotError):
    """Raised when a user has no requests left for today."""

    def __init__(self, status):
        self.status = status
        super().__init__(
            f"Daily limit of {status.limit} requests reached for user {status.user_id}"
        )


class OwnershipError(CaptionBotError):
    """Raised when a user tries to view or delete another user's record."""

    pass


class RecordNotFoundError(CaptionBotError):
    """Raised when a caption record does not exist."""

    pass


class ImageDownloadError(CaptionBotError):
    """Raised when an image cannot be downloaded from a URL or from Slack."""

    pass
