"""
Core pytest fixtures shared by unit and integration tests.

Provides temp-directory stores, a controllable clock, a mocked vision
provider, realistic model responses and Slack payloads.
"""

import sys
from pathlib import Path

# Add parent directory to path so we can import agents, clients and services
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from datetime import datetime, timezone
from typing import Dict, Any
from unittest.mock import AsyncMock, MagicMock

from clients.caption_store import JsonCaptionStore
from clients.image_store import LocalImageStore
from providers.base import BaseVisionProvider
from services.caption_generator import CaptionGenerator
from services.caption_service import CaptionService
from services.quota_tracker import QuotaTracker
from tests.sample_data import FixedClock, MODEL_RESPONSE, PNG_BYTES


# ============================================================================
# Storage fixtures
# ============================================================================


@pytest.fixture
def clock() -> FixedClock:
    """Clock fixed at 2025-06-15 12:00 UTC."""
    return FixedClock(datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def caption_store(tmp_path) -> JsonCaptionStore:
    return JsonCaptionStore(str(tmp_path / "data" / "captions.json"))


@pytest.fixture
def image_store(tmp_path) -> LocalImageStore:
    return LocalImageStore(str(tmp_path / "data" / "images"), public_base_url="http://testserver")


@pytest.fixture
def quota_tracker(caption_store, clock) -> QuotaTracker:
    return QuotaTracker(caption_store, daily_limit=25, clock=clock)


# ============================================================================
# Provider / service fixtures
# ============================================================================


@pytest.fixture
def mock_provider() -> MagicMock:
    """Vision provider that answers with a well-formed response."""
    provider = MagicMock(spec=BaseVisionProvider)
    provider.id = "mock"
    provider.name = "Mock Vision"
    provider.infer.return_value = MODEL_RESPONSE
    provider.health_check.return_value = True
    provider.list_models.return_value = ["mock-vision"]
    return provider


@pytest.fixture
def caption_service(mock_provider, quota_tracker, caption_store, image_store) -> CaptionService:
    return CaptionService(
        generator=CaptionGenerator(mock_provider),
        tracker=quota_tracker,
        store=caption_store,
        image_store=image_store,
        admin_ids=["UADMIN"],
    )


# ============================================================================
# Slack fixtures
# ============================================================================


@pytest.fixture
def mock_slack_app() -> MagicMock:
    """AsyncApp stand-in; decorator registration calls are recorded."""
    app = MagicMock()
    app.client = MagicMock()
    app.client.auth_test = AsyncMock(return_value={"user": "captionbot"})
    return app


@pytest.fixture
def mock_slack_client() -> MagicMock:
    client = MagicMock()
    client.users_info = AsyncMock(
        return_value={"user": {"name": "jdoe", "real_name": "Jane Doe", "profile": {"display_name": "jane"}}}
    )
    client.conversations_open = AsyncMock(return_value={"channel": {"id": "D999"}})
    client.chat_postMessage = AsyncMock(return_value={"ok": True})
    return client


@pytest.fixture
def image_dm_event() -> Dict[str, Any]:
    """DM carrying one PNG and a mood."""
    return {
        "type": "message",
        "subtype": "file_share",
        "channel": "D123",
        "channel_type": "im",
        "user": "U123",
        "text": "😜 Fun / Playful",
        "ts": "1700000000.000100",
        "files": [
            {
                "name": "sunset.png",
                "mimetype": "image/png",
                "size": len(PNG_BYTES),
                "url_private_download": "https://files.slack.com/files-pri/T1-F1/sunset.png",
            }
        ],
    }


@pytest.fixture
def slash_command() -> Dict[str, Any]:
    return {
        "command": "/caption",
        "text": "",
        "user_id": "U123",
        "user_name": "jdoe",
        "channel_id": "C123",
    }
