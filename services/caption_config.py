"""
Caption bot configuration from environment variables.

Shared by the launcher and the standalone HTTP API so both build the
service from the same keys.
"""

import os
from typing import Any, Dict, List

from agent_platform import env_flag
from providers.gemini_adapter import parse_api_keys


def _id_list(name: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


def build_config() -> Dict[str, Any]:
    """Collect configuration from environment variables"""
    return {
        "slack_bot_token": os.getenv("SLACK_BOT_TOKEN"),
        "slack_app_token": os.getenv("SLACK_APP_TOKEN"),
        "gemini_keys": parse_api_keys(os.getenv("GEMINI_KEYS") or os.getenv("GOOGLE_API_KEY")),
        "gemini_model": os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        "data_dir": os.getenv("CAPTION_DATA_DIR", "./data"),
        "daily_limit": int(os.getenv("CAPTION_DAILY_LIMIT", "25")),
        "utc_offset_hours": float(os.getenv("QUOTA_UTC_OFFSET_HOURS", "0")),
        "fail_open": env_flag("QUOTA_FAIL_OPEN", True),
        "whitelist": _id_list("QUOTA_WHITELIST"),
        "admin_users": _id_list("CAPTION_ADMIN_USERS"),
        "admin_token": os.getenv("CAPTION_ADMIN_TOKEN", ""),
        "public_base_url": os.getenv("PUBLIC_BASE_URL", "http://localhost:9520"),
        "enable_http_api": env_flag("ENABLE_HTTP_API", True),
        "http_api_port": int(os.getenv("HTTP_API_PORT", "9520")),
        "notification": {
            "enabled": bool(os.getenv("NTFY_TOPIC")),
            "topic": os.getenv("NTFY_TOPIC", ""),
            "url": os.getenv("NTFY_URL", "https://ntfy.sh"),
        },
    }
