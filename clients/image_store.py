"""
Image Store - local directory storage for uploaded images.

Each image is written as `<id>.<ext>` next to a `<id>.json` sidecar holding
its metadata. Public URLs are `{public_base_url}/images/{id}`, served by the
HTTP API.
"""

import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

import requests

from services.exceptions import ImageDownloadError, StorageError, ValidationError

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024  # 10MB

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


@dataclass
class StoredImage:
    """Metadata for one stored image."""
    id: str
    url: str
    path: str
    name: str
    content_type: str
    size: int
    user_id: str
    created_at: str

    def to_dict(self) -> Dict:
        return asdict(self)


def sniff_image_type(data: bytes) -> Optional[str]:
    """
    Detect the image MIME type from magic bytes.

    Returns:
        One of ALLOWED_IMAGE_TYPES keys, or None if unrecognised
    """
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def validate_image(data: bytes, content_type: Optional[str] = None) -> str:
    """
    Check size and type of an image.

    Args:
        data: Image bytes
        content_type: Declared MIME type, if any

    Returns:
        The detected MIME type

    Raises:
        ValidationError: Empty, too large, or not a supported image
    """
    if not data:
        raise ValidationError("Image is empty")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError(
            f"Image is {len(data) / (1024 * 1024):.1f}MB; maximum is {MAX_IMAGE_BYTES // (1024 * 1024)}MB"
        )

    declared = (content_type or "").split(";")[0].strip().lower()
    if declared == "image/jpg":
        declared = "image/jpeg"
    if declared and not declared.startswith("image/"):
        raise ValidationError("Only image files are allowed")
    if declared and declared not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(f"Unsupported image type: {declared}")

    detected = sniff_image_type(data)
    if detected is None:
        raise ValidationError("File content is not a JPEG, PNG, WebP or GIF image")
    return detected


def fetch_image(url: str, timeout: int = 30) -> tuple:
    """
    Download an image over HTTP(S).

    Args:
        url: http(s) URL of the image
        timeout: Request timeout in seconds

    Returns:
        (bytes, content_type)

    Raises:
        ImageDownloadError: If the download fails or returns nothing
    """
    if not url.startswith(("http://", "https://")):
        raise ImageDownloadError(f"Not an http(s) URL: {url[:100]}")
    try:
        logger.info(f"Downloading image: {url[:100]}...")
        response = requests.get(url, timeout=timeout, allow_redirects=True)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ImageDownloadError(f"Failed to download image: {e}") from e

    if not response.content:
        raise ImageDownloadError("Empty response from image download")

    content_type = response.headers.get("Content-Type", "")
    logger.info(f"Downloaded {len(response.content)} bytes ({content_type or 'unknown type'})")
    return response.content, content_type


class LocalImageStore:
    """Stores images under a directory and serves their bytes back by id."""

    def __init__(self, root_dir: str, public_base_url: str = "http://localhost:9520"):
        """
        Initialize image store

        Args:
            root_dir: Directory that holds image files and sidecars
            public_base_url: Base URL the HTTP API is reachable at
        """
        self.root = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def url_for(self, image_id: str) -> str:
        return f"{self.public_base_url}/images/{image_id}"

    def _meta_path(self, image_id: str) -> Path:
        return self.root / f"{image_id}.json"

    @staticmethod
    def _valid_id(image_id: str) -> bool:
        return bool(image_id) and image_id.isalnum()

    def store(
        self,
        data_or_url: Union[bytes, str],
        name: str = "",
        user_id: str = "",
        content_type: Optional[str] = None,
    ) -> StoredImage:
        """
        Validate and save an image.

        Args:
            data_or_url: Raw bytes, or an http(s) URL to download first
            name: Original file name
            user_id: Owner of the image
            content_type: Declared MIME type

        Returns:
            StoredImage metadata

        Raises:
            ValidationError: Image rejected
            ImageDownloadError: URL could not be fetched
            StorageError: Disk write failed
        """
        if isinstance(data_or_url, str):
            data, fetched_type = fetch_image(data_or_url)
            content_type = content_type or fetched_type
            name = name or data_or_url.rsplit("/", 1)[-1].split("?")[0]
        else:
            data = data_or_url

        mime_type = validate_image(data, content_type)
        image_id = uuid.uuid4().hex
        path = self.root / f"{image_id}.{ALLOWED_IMAGE_TYPES[mime_type]}"

        image = StoredImage(
            id=image_id,
            url=self.url_for(image_id),
            path=str(path),
            name=name or path.name,
            content_type=mime_type,
            size=len(data),
            user_id=user_id,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

        try:
            path.write_bytes(data)
            self._meta_path(image_id).write_text(json.dumps(image.to_dict(), indent=2))
        except OSError as e:
            raise StorageError(f"Failed to write image {image_id}: {e}") from e

        logger.info(f"✅ Stored image {image_id} ({image.size} bytes) for user {user_id}")
        return image

    def get_info(self, image_id: str) -> Optional[Dict]:
        if not self._valid_id(image_id):
            return None
        meta_path = self._meta_path(image_id)
        if not meta_path.exists():
            return None
        try:
            return json.loads(meta_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read image metadata {image_id}: {e}")
            return None

    def load(self, image_id: str) -> Optional[bytes]:
        info = self.get_info(image_id)
        if not info:
            return None
        path = Path(info["path"])
        if not path.exists():
            return None
        return path.read_bytes()

    def delete(self, image_id: str) -> bool:
        """Remove an image and its sidecar. Returns False if it did not exist."""
        info = self.get_info(image_id)
        if not info:
            return False
        Path(info["path"]).unlink(missing_ok=True)
        self._meta_path(image_id).unlink(missing_ok=True)
        logger.info(f"Deleted image {image_id}")
        return True

    def health_check(self) -> bool:
        return self.root.is_dir()
