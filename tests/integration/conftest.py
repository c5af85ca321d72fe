"""
Integration test configuration and fixtures.

Wires the real CaptionService (temp-directory stores, mocked vision
provider) into the HTTP API and the Slack agent.
"""

import pytest
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from agents.caption_agent import CaptionAgent
from services.caption_api import api as caption_api

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture
def api_client(caption_service):
    """TestClient bound to the shared service; startup is not run."""
    caption_api.set_service(caption_service)
    caption_api.configure({"admin_token": ADMIN_TOKEN})
    client = TestClient(caption_api.app)
    yield client
    caption_api.set_service(None)
    caption_api.configure({"admin_token": ""})


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture
def caption_agent(caption_service, mock_slack_app):
    config = {"slack_bot_token": "xoxb-test", "slack_app_token": "xapp-test"}
    return CaptionAgent(config, caption_service, app=mock_slack_app)


@pytest.fixture
def ack():
    return AsyncMock()


@pytest.fixture
def say():
    return AsyncMock()


@pytest.fixture
def respond():
    return AsyncMock()
