"""
Message processor for detecting image attachments in Slack messages.
"""

from typing import List, Dict, Any
import os

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "gif"}


def detect_image_attachments(message_data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Detect image attachments in a Slack message.

    A file counts as an image when its mimetype starts with image/ or,
    lacking a mimetype, when its extension is a known image extension.

    Args:
        message_data: Message event data from Slack

    Returns:
        List of image attachment info with name, type, URL, mimetype and size
    """
    attachments = []

    files = message_data.get("files", [])
    for file_obj in files:
        file_name = file_obj.get("name", "")
        if not file_name:
            continue

        # Extract file extension
        _, ext = os.path.splitext(file_name)
        file_type = ext.lstrip(".").lower() if ext else ""
        mimetype = file_obj.get("mimetype") or ""

        if mimetype:
            if not mimetype.startswith("image/"):
                continue
        elif file_type not in IMAGE_EXTENSIONS:
            continue

        attachments.append({
            "name": file_name,
            "type": file_type,
            "url_private_download": file_obj.get("url_private_download"),
            "mimetype": mimetype or None,
            "size": file_obj.get("size", 0),
        })

    return attachments


def extract_mood(message_data: Dict[str, Any]) -> str:
    """Message text with bot mentions removed, used as the mood."""
    text = message_data.get("text", "") or ""
    words = [w for w in text.split() if not (w.startswith("<@") and w.endswith(">"))]
    return " ".join(words).strip()
