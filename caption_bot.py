#!/usr/bin/env python3
"""
Caption Bot Launcher - Entry point for the Slack caption bot service

Loads configuration, builds the shared CaptionService, starts the Slack agent
and (optionally) the HTTP API in the same process.
Designed to run as systemd service or standalone for testing.
"""

import os
import sys
import signal
import asyncio
from pathlib import Path
from typing import Optional

import uvicorn

# Add project to path
sys.path.insert(0, str(Path(__file__).parent))

from agent_platform import AgentPlatform, configure_logging
from agents.caption_agent import CaptionAgent
from services.caption_api import api as caption_api
from services.caption_config import build_config
from services.caption_service import build_caption_service


def load_secrets(secrets_file: Optional[Path] = None):
    """Load secrets from secrets.env file (existing environment wins)"""
    secrets_file = secrets_file or Path(__file__).parent / "secrets.env"

    if not secrets_file.exists():
        print(f"⚠️  secrets.env not found at {secrets_file}")
        print("   Assuming environment variables are already set...")
        return

    print(f"📝 Loading secrets from {secrets_file}")

    with open(secrets_file) as f:
        for line in f:
            line = line.strip()

            # Skip comments and empty lines
            if not line or line.startswith("#"):
                continue

            # Skip SOPS encrypted lines
            if "ENC[" in line:
                continue

            # Parse: export KEY="value" or KEY=value
            if "=" not in line:
                continue

            if line.startswith("export "):
                line = line[7:]

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")

            # Only set if not already in environment (env vars take precedence)
            if key not in os.environ:
                os.environ[key] = value


def validate_environment() -> bool:
    """Validate required environment variables"""
    required = ["SLACK_BOT_TOKEN", "SLACK_APP_TOKEN"]

    missing = [var for var in required if not os.getenv(var)]
    if not (os.getenv("GEMINI_KEYS") or os.getenv("GOOGLE_API_KEY")):
        missing.append("GEMINI_KEYS")

    if missing:
        print(f"❌ Missing required environment variables: {', '.join(missing)}")
        print("\nRequired variables:")
        print("  SLACK_BOT_TOKEN   - Bot token from api.slack.com (xoxb-...)")
        print("  SLACK_APP_TOKEN   - App token for Socket Mode (xapp-...)")
        print("  GEMINI_KEYS       - Comma-separated Gemini API keys")
        return False
    return True


class CaptionBotService:
    """Service wrapper running the Slack agent and the HTTP API together"""

    def __init__(self):
        self.platform = AgentPlatform()
        self.agent: Optional[CaptionAgent] = None
        self.api_server: Optional[uvicorn.Server] = None
        self.shutdown_event = asyncio.Event()

    def setup_signals(self):
        """Setup signal handlers for graceful shutdown"""

        def signal_handler(signum, frame):
            print(f"\n📡 Received signal {signum}, shutting down gracefully...")
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def run(self):
        """Main service loop"""
        load_secrets()

        if not validate_environment():
            sys.exit(1)

        self.setup_signals()

        config = build_config()

        print("\n✅ Configuration:")
        print(f"   Data:    {config['data_dir']}")
        print(f"   Model:   {config['gemini_model']} ({len(config['gemini_keys'])} keys)")
        print(f"   Limit:   {config['daily_limit']}/day (UTC{config['utc_offset_hours']:+g})")
        print(f"   API:     {'port ' + str(config['http_api_port']) if config['enable_http_api'] else 'disabled'}")
        print(f"   Bot:     {config['slack_bot_token'][:20]}...")
        print()

        # One service for both front ends, so they share the whitelist
        service = build_caption_service(config)

        print("🤖 Initializing caption agent...")
        self.agent = CaptionAgent(config, service)

        tasks = [asyncio.create_task(self.platform.start_service(self.agent))]

        if config["enable_http_api"]:
            caption_api.configure(config)
            caption_api.set_service(service)
            self.api_server = uvicorn.Server(
                uvicorn.Config(caption_api.app, host="0.0.0.0", port=config["http_api_port"], log_config=None)
            )
            tasks.append(asyncio.create_task(self.api_server.serve()))

        print("🚀 Starting caption bot service...\n")

        shutdown_task = asyncio.create_task(self.shutdown_event.wait())

        try:
            done, pending = await asyncio.wait(
                tasks + [shutdown_task], return_when=asyncio.FIRST_COMPLETED
            )

            if self.api_server:
                self.api_server.should_exit = True

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            # Check if a service failed
            for task in tasks:
                if task in done:
                    try:
                        task.result()
                    except Exception as e:
                        print(f"❌ Service failed: {e}")
                        raise

            print("\n👋 Caption bot service stopped gracefully")

        except KeyboardInterrupt:
            print("\n👋 Interrupted by user")


def main():
    """Entry point"""
    print("=" * 60)
    print("  Slack Caption Bot")
    print("=" * 60)
    print()

    configure_logging()
    service = CaptionBotService()

    try:
        asyncio.run(service.run())
        sys.exit(0)
    except Exception as e:
        print(f"\n💥 Service crashed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
