"""
File handler for downloading and validating images shared in Slack.
"""

import requests
import logging

from clients.image_store import MAX_IMAGE_BYTES, validate_image
from services.exceptions import ImageDownloadError, ValidationError

logger = logging.getLogger(__name__)


def download_file_from_slack(url: str, token: str) -> bytes:
    """
    Download a file from Slack using authenticated URL.

    Args:
        url: File URL (url_private_download from Slack)
        token: Slack bot token for authentication

    Returns:
        File content as bytes

    Raises:
        ImageDownloadError: If download fails
    """
    try:
        # Try with Bearer token first, allow redirects
        logger.info(f"Downloading from Slack: {url[:100]}...")
        headers = {"Authorization": f"Bearer {token}"}
        response = requests.get(url, headers=headers, timeout=30, allow_redirects=True)

        # If unauthorized, try without auth (some URLs don't need it)
        if response.status_code == 401:
            logger.warning("Bearer auth failed (401), retrying without auth")
            response = requests.get(url, timeout=30, allow_redirects=True)

        response.raise_for_status()

        if not response.content:
            raise ImageDownloadError("Empty response from Slack file download")

        # Redirect landed on a login page instead of the file
        content_type = response.headers.get("Content-Type", "")
        if "text/html" in content_type:
            logger.error(f"Got HTML response instead of file (redirected to {response.url[:100]})")
            raise ImageDownloadError(
                "Got HTML response instead of file content, check the bot's files:read scope"
            )

        logger.info(f"Downloaded {len(response.content)} bytes from Slack (status: {response.status_code})")
        return response.content
    except ImageDownloadError:
        raise
    except requests.RequestException as e:
        raise ImageDownloadError(f"Failed to download file from Slack: {e}")


def download_slack_image(attachment: dict, token: str) -> tuple:
    """
    Download an image attachment and check it is a supported image.

    Args:
        attachment: Attachment info from detect_image_attachments()
        token: Slack bot token

    Returns:
        (image bytes, detected MIME type)

    Raises:
        ValidationError: Too large or not a supported image
        ImageDownloadError: If download fails
    """
    url = attachment.get("url_private_download")
    if not url:
        raise ImageDownloadError(f"No download URL for {attachment.get('name', 'file')}")

    # Slack reports size up front, so oversized files are rejected before downloading
    if attachment.get("size", 0) > MAX_IMAGE_BYTES:
        raise ValidationError(f"Image is larger than {MAX_IMAGE_BYTES // (1024 * 1024)}MB")

    data = download_file_from_slack(url, token)
    mime_type = validate_image(data, attachment.get("mimetype"))
    return data, mime_type
