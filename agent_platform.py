"""
Agent Platform - Core framework for running long-lived bot services
"""

import asyncio
import logging
import os
from typing import Optional, Dict, Any
from datetime import datetime
from pathlib import Path

import aiohttp

LOG_FORMAT = "[%(asctime)s] %(levelname)s - %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO, log_dir: Optional[str] = None) -> None:
    """
    Install the stream + file handlers used by every service.

    Args:
        level: Root log level
        log_dir: Directory for caption_bot.log (default: ./logs next to this file)
    """
    log_path = Path(log_dir) if log_dir else Path(__file__).parent / "logs"
    log_path.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_path / "caption_bot.log"),
        ],
    )


class Agent:
    """Base class for all agents"""

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None):
        self.name = name
        self.config = config or {}
        self.start_time = None
        self.end_time = None
        self.logger = logging.getLogger(self.name)

    async def run(self) -> bool:
        """
        Main agent execution. Override in subclass.

        Returns:
            True if successful, False otherwise
        """
        raise NotImplementedError("Subclass must implement run()")

    async def execute(self) -> bool:
        """Execute the agent with timing and error handling"""
        self.start_time = datetime.now()
        logger.info(f"[{self.name}] Starting execution...")

        try:
            result = await self.run()
            self.end_time = datetime.now()
            duration = (self.end_time - self.start_time).total_seconds()

            status = "✓ SUCCESS" if result else "✗ FAILED"
            logger.info(f"[{self.name}] {status} (took {duration:.2f}s)")

            return result

        except Exception as e:
            self.end_time = datetime.now()
            duration = (self.end_time - self.start_time).total_seconds()
            logger.error(f"[{self.name}] ✗ ERROR: {e} (took {duration:.2f}s)", exc_info=True)
            return False

    async def notify(self, title: str, message: str = "", priority: str = "3") -> None:
        """Send a notification to ntfy if a topic is configured"""
        notification = self.config.get("notification", {})
        topic = (notification.get("topic") or "").strip()
        if not notification.get("enabled", False) or not topic:
            return

        url = (notification.get("url") or "https://ntfy.sh").rstrip("/")
        try:
            async with aiohttp.ClientSession() as session:
                await session.post(
                    f"{url}/{topic}",
                    headers={"Title": title, "Priority": priority},
                    data=message or title,
                    timeout=aiohttp.ClientTimeout(total=10),
                )
        except Exception as e:
            logger.warning(f"Failed to send notification: {e}")


class AgentPlatform:
    """Platform for running service agents"""

    def __init__(self, max_restarts: int = 5, base_delay: float = 5):
        self.max_restarts = max_restarts
        self.base_delay = base_delay

    async def start_service(self, agent: Agent) -> None:
        """
        Start a long-running service agent (runs indefinitely)

        Handles errors and notifications, with automatic restart on failure.

        Args:
            agent: Agent instance to run as service
        """
        logger.info(f"Starting service agent: {agent.name}")

        restart_count = 0

        while restart_count < self.max_restarts:
            try:
                # Run the agent's main loop (blocks indefinitely)
                await agent.run()

                # If we get here, agent stopped gracefully
                logger.info(f"Service agent {agent.name} stopped gracefully")
                break

            except KeyboardInterrupt:
                logger.info(f"Service agent {agent.name} interrupted by user")
                break

            except Exception as e:
                restart_count += 1
                delay = self.base_delay * restart_count

                logger.error(
                    f"Service agent {agent.name} crashed (attempt {restart_count}/{self.max_restarts}): {e}",
                    exc_info=True,
                )

                await agent.notify(
                    f"⚠️ {agent.name} crashed",
                    f"Restart {restart_count}/{self.max_restarts}: {e}",
                )

                if restart_count < self.max_restarts:
                    logger.info(f"Restarting in {delay} seconds...")
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Service agent {agent.name} exceeded max restarts, giving up")
                    await agent.notify(
                        f"❌ {agent.name} failed",
                        f"Failed permanently after {self.max_restarts} restart attempts",
                        priority="5",
                    )
                    raise


def env_flag(name: str, default: bool) -> bool:
    """Read a true/false environment variable."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
