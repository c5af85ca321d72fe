"""
Unit tests for the agent platform restart loop, notifications and helpers.
"""

import logging
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from agent_platform import Agent, AgentPlatform, configure_logging, env_flag


class FlakyAgent(Agent):
    """Fails a fixed number of times before stopping cleanly."""

    def __init__(self, failures: int, config=None):
        super().__init__("flaky", config)
        self.failures = failures
        self.runs = 0

    async def run(self) -> bool:
        self.runs += 1
        if self.runs <= self.failures:
            raise RuntimeError(f"crash {self.runs}")
        return True


@pytest.mark.unit
class TestAgentPlatform:
    async def test_restarts_until_success(self):
        agent = FlakyAgent(failures=2)
        agent.notify = AsyncMock()
        await AgentPlatform(max_restarts=5, base_delay=0).start_service(agent)
        assert agent.runs == 3
        assert agent.notify.await_count == 2

    async def test_gives_up_after_max_restarts(self):
        agent = FlakyAgent(failures=10)
        agent.notify = AsyncMock()
        with pytest.raises(RuntimeError):
            await AgentPlatform(max_restarts=3, base_delay=0).start_service(agent)
        assert agent.runs == 3
        # one notice per crash plus the final failure
        assert agent.notify.await_count == 4
        assert agent.notify.await_args.kwargs["priority"] == "5"


@pytest.mark.unit
class TestAgent:
    async def test_execute_reports_failure(self):
        agent = FlakyAgent(failures=1)
        assert await agent.execute() is False
        assert await agent.execute() is True

    async def test_run_not_implemented(self):
        assert await Agent("base").execute() is False

    async def test_notify_skipped_without_topic(self):
        agent = Agent("quiet", {"notification": {"enabled": True, "topic": ""}})
        with patch("agent_platform.aiohttp.ClientSession") as session:
            await agent.notify("title", "message")
        session.assert_not_called()

    async def test_notify_posts_to_topic(self):
        agent = Agent("loud", {"notification": {"enabled": True, "topic": "bots", "url": "https://ntfy.example/"}})
        session = MagicMock()
        session.post = AsyncMock()
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=session)
        context.__aexit__ = AsyncMock(return_value=False)
        with patch("agent_platform.aiohttp.ClientSession", return_value=context):
            await agent.notify("Started", "hello", priority="4")
        url = session.post.call_args[0][0]
        assert url == "https://ntfy.example/bots"
        assert session.post.call_args.kwargs["headers"] == {"Title": "Started", "Priority": "4"}


@pytest.mark.unit
class TestHelpers:
    def test_env_flag(self, monkeypatch):
        monkeypatch.delenv("CAPTION_TEST_FLAG", raising=False)
        assert env_flag("CAPTION_TEST_FLAG", True) is True
        monkeypatch.setenv("CAPTION_TEST_FLAG", "yes")
        assert env_flag("CAPTION_TEST_FLAG", False) is True
        monkeypatch.setenv("CAPTION_TEST_FLAG", "0")
        assert env_flag("CAPTION_TEST_FLAG", True) is False

    def test_configure_logging_creates_log_dir(self, tmp_path):
        with patch("agent_platform.logging.basicConfig") as basic_config:
            configure_logging(logging.DEBUG, log_dir=str(tmp_path / "logs"))
        assert (tmp_path / "logs").is_dir()
        handlers = basic_config.call_args.kwargs["handlers"]
        assert any(isinstance(h, logging.FileHandler) for h in handlers)
        for handler in handlers:
            handler.close()
