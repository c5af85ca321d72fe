"""
Caption Agent - Slack front end for the caption generator

Connects to Slack via Socket Mode:
- DM an image with a mood as the message text to get 3 captions
- An image without a mood gets a mood picker; the image waits until one is chosen
- Slash commands for history, quota, help and admin actions
- Copy buttons on every caption
"""

import asyncio
import os
import re
from typing import Awaitable, Callable, Dict, Optional

from slack_bolt.async_app import AsyncApp
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_sdk.errors import SlackApiError

from agent_platform import Agent
from services.caption_service import CaptionService, run_blocking
from services.exceptions import ImageDownloadError, QuotaExceededError, ValidationError
from slack_bot.caption_ui import (
    COPY_ACTION_PREFIX,
    DM_HISTORY_ACTION,
    DM_HISTORY_COUNT,
    HISTORY_PREVIEW_COUNT,
    MOOD_SELECT_ACTION,
    build_admin_stats_blocks,
    build_caption_blocks,
    build_dm_history_blocks,
    build_help_blocks,
    build_history_blocks,
    build_mood_picker_blocks,
    build_quota_blocks,
    build_rate_limited_blocks,
)
from slack_bot.file_handler import download_slack_image
from slack_bot.message_processor import detect_image_attachments, extract_mood

ADMIN_ACTIONS = (
    "reset_rate_limit",
    "reset_my_limit",
    "check_status",
    "add_whitelist",
    "remove_whitelist",
    "clear_records",
)

_USER_REF = re.compile(r"^<@([A-Z0-9]+)(?:\|[^>]*)?>$")


def parse_user_ref(text: str) -> str:
    """Accept a raw user id or an escaped mention like <@U123|name>."""
    match = _USER_REF.match(text.strip())
    return match.group(1) if match else text.strip()


class CaptionAgent(Agent):
    """Slack caption bot backed by a shared CaptionService"""

    def __init__(self, config: Dict, service: CaptionService, app: Optional[AsyncApp] = None):
        super().__init__("caption_agent", config)

        # Slack setup
        self.bot_token = config.get("slack_bot_token") or os.getenv("SLACK_BOT_TOKEN")
        self.app_token = config.get("slack_app_token") or os.getenv("SLACK_APP_TOKEN")

        if app is None and (not self.bot_token or not self.app_token):
            raise ValueError(
                "Missing Slack tokens. Set SLACK_BOT_TOKEN and SLACK_APP_TOKEN in environment."
            )

        self.app = app or AsyncApp(token=self.bot_token)
        self.socket_handler = None
        self.service = service

        # user_id -> image waiting for a mood
        self.pending_images: Dict[str, Dict] = {}

        self._register_handlers()

    def _register_handlers(self):
        """Register Slack event, command and action handlers"""
        self.app.event("message")(self.handle_message)
        self.app.event("app_mention")(self.handle_mention)

        self.app.command("/caption")(self.handle_caption_command)
        self.app.command("/caption-history")(self.handle_history_command)
        self.app.command("/caption-quota")(self.handle_quota_command)
        self.app.command("/caption-help")(self.handle_help_command)
        self.app.command("/caption-admin")(self.handle_admin_command)

        self.app.action(re.compile(rf"^{COPY_ACTION_PREFIX}\d+$"))(self.handle_copy_action)
        self.app.action(DM_HISTORY_ACTION)(self.handle_dm_history_action)
        self.app.action(MOOD_SELECT_ACTION)(self.handle_mood_select)

    # ------------------------------------------------------------------
    # Caption flow
    # ------------------------------------------------------------------

    async def _get_username(self, client, user_id: str) -> str:
        try:
            info = await client.users_info(user=user_id)
            user = info.get("user", {})
            profile = user.get("profile", {})
            return profile.get("display_name") or user.get("real_name") or user.get("name") or user_id
        except Exception as e:
            self.logger.warning(f"Could not look up username for {user_id}: {e}")
            return user_id

    async def _generate_and_reply(
        self,
        user_id: str,
        username: str,
        pending: Dict,
        mood: str,
        reply: Callable[..., Awaitable],
    ) -> bool:
        """
        Run one caption request and answer through say() or respond().

        Returns:
            True once captions were generated and saved
        """
        try:
            record, status = await self.service.create_captions(
                user_id=user_id,
                username=username,
                image=pending["data"],
                mood=mood,
                image_name=pending.get("name", ""),
                mime_type=pending.get("mime_type"),
            )
        except QuotaExceededError as e:
            reset_text = self.service.tracker.format_reset_time(e.status.reset_at)
            await reply(
                blocks=build_rate_limited_blocks(e.status, reset_text),
                text=f"Daily limit reached. Resets in {reset_text}. Your image is kept, use `/caption` then.",
            )
            return False
        except ValidationError as e:
            await reply(text=f"⚠️ {e}")
            return False
        except Exception as e:
            self.logger.error(f"Error generating captions for {user_id}: {e}", exc_info=True)
            await reply(text=f"Sorry, I encountered an error: {e}")
            return False

        await reply(
            blocks=build_caption_blocks(record, status),
            text="\n".join(record.captions),
        )
        return True

    async def handle_message(self, event, say, client):
        """Handle DM messages carrying an image"""
        # Ignore bot messages and edits
        if event.get("bot_id") or event.get("subtype") not in (None, "file_share"):
            return
        if event.get("channel_type") != "im":
            return

        user_id = event.get("user")
        attachments = detect_image_attachments(event)
        self.logger.info(f"Image attachments detected from {user_id}: {len(attachments)}")

        if not attachments:
            await say(text="📸 Send me an image with a mood as the message, or try `/caption-help`.")
            return

        attachment = attachments[0]
        try:
            loop = asyncio.get_event_loop()
            data, mime_type = await loop.run_in_executor(
                None, download_slack_image, attachment, self.bot_token
            )
        except (ValidationError, ImageDownloadError) as e:
            self.logger.warning(f"Rejected image {attachment['name']} from {user_id}: {e}")
            await say(text=f"⚠️ {e}")
            return

        pending = {"data": data, "mime_type": mime_type, "name": attachment["name"]}
        mood = extract_mood(event)

        if not mood:
            self.pending_images[user_id] = pending
            await say(blocks=build_mood_picker_blocks(), text="Pick a mood for your image")
            return

        username = await self._get_username(client, user_id)
        if not await self._generate_and_reply(user_id, username, pending, mood, say):
            # kept for a later /caption
            self.pending_images[user_id] = pending

    async def handle_mood_select(self, ack, body, action, respond):
        """Mood picked for a pending image"""
        await ack()
        user_id = body["user"]["id"]
        mood = action["selected_option"]["value"]

        pending = self.pending_images.get(user_id)
        if not pending:
            await respond(text="That image is no longer waiting. Please send it again.", replace_original=False)
            return

        username = body["user"].get("username") or body["user"].get("name") or user_id
        if await self._generate_and_reply(user_id, username, pending, mood, respond):
            self.pending_images.pop(user_id, None)

    async def handle_caption_command(self, ack, command, respond):
        """/caption [mood] - caption the image waiting for a mood"""
        await ack()
        user_id = command["user_id"]
        mood = command.get("text", "").strip()

        if user_id not in self.pending_images:
            await respond(
                text="📸 DM me an image first (add the mood as the message text), then use `/caption <mood>` if needed."
            )
            return

        if not mood:
            await respond(blocks=build_mood_picker_blocks(), text="Pick a mood for your image")
            return

        pending = self.pending_images[user_id]
        if await self._generate_and_reply(user_id, command.get("user_name", user_id), pending, mood, respond):
            self.pending_images.pop(user_id, None)

    # ------------------------------------------------------------------
    # History, quota, help
    # ------------------------------------------------------------------

    async def handle_history_command(self, ack, command, respond):
        await ack()
        user_id = command["user_id"]
        try:
            records, total = await run_blocking(
                self.service.history, user_id, page=1, limit=HISTORY_PREVIEW_COUNT
            )
        except Exception as e:
            self.logger.error(f"Failed to load history for {user_id}: {e}", exc_info=True)
            await respond(text=f"Sorry, I couldn't load your history: {e}")
            return
        await respond(blocks=build_history_blocks(records, total), text=f"{total} captions in your history")

    async def handle_dm_history_action(self, ack, body, client, respond):
        """Send the latest records with full captions to the user's DM"""
        await ack()
        user_id = body["user"]["id"]

        try:
            records, _ = await run_blocking(self.service.history, user_id, page=1, limit=DM_HISTORY_COUNT)
            dm = await client.conversations_open(users=user_id)
            await client.chat_postMessage(
                channel=dm["channel"]["id"],
                blocks=build_dm_history_blocks(records),
                text=f"Your last {len(records)} captions",
            )
            await respond(text="📨 Sent your history to your DMs.", replace_original=False)
        except SlackApiError as e:
            self.logger.error(f"Failed to DM history to {user_id}: {e}")
            await respond(text="Sorry, I couldn't send you a DM.", replace_original=False)
        except Exception as e:
            self.logger.error(f"Failed to load history for {user_id}: {e}", exc_info=True)
            await respond(text=f"Sorry, I couldn't load your history: {e}", replace_original=False)

    async def handle_quota_command(self, ack, command, respond):
        await ack()
        user_id = command["user_id"]
        try:
            status = await run_blocking(self.service.check_quota, user_id)
            approaching = await run_blocking(self.service.tracker.is_approaching_limit, user_id)
        except Exception as e:
            self.logger.error(f"Failed to load quota for {user_id}: {e}", exc_info=True)
            await respond(text=f"Sorry, I couldn't check your quota: {e}")
            return
        reset_text = self.service.tracker.format_reset_time(status.reset_at)
        await respond(
            blocks=build_quota_blocks(status, reset_text, approaching),
            text=f"{status.remaining} requests left today",
        )

    async def handle_help_command(self, ack, respond):
        await ack()
        await respond(blocks=build_help_blocks(self.service.tracker.daily_limit), text="Caption Bot help")

    async def handle_copy_action(self, ack, action, respond):
        """Copy button: echo the caption back so it can be copied"""
        await ack()
        n = action["action_id"][len(COPY_ACTION_PREFIX):]
        await respond(
            text=f"📋 Caption {n}:\n```{action.get('value', '')}```",
            response_type="ephemeral",
            replace_original=False,
        )

    async def handle_mention(self, event, say):
        await say("👋 I write social captions for your images! DM me a picture with a mood, or try `/caption-help`.")

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def handle_admin_command(self, ack, command, respond):
        """/caption-admin <action> [user_id]"""
        await ack()
        user_id = command["user_id"]

        if not self.service.is_admin(user_id):
            await respond(text="⛔ This command is for caption bot admins only.")
            return

        parts = command.get("text", "").split()
        action = parts[0] if parts else ""
        target = parse_user_ref(parts[1]) if len(parts) > 1 else None

        if action not in ADMIN_ACTIONS:
            await respond(text=f"Usage: `/caption-admin <action> [user_id]`\nActions: {', '.join(ADMIN_ACTIONS)}")
            return

        if action == "reset_my_limit":
            target = user_id
        if action not in ("check_status", "reset_my_limit") and not target:
            await respond(text=f"`{action}` needs a user id")
            return

        try:
            reply = await run_blocking(self._run_admin_action, action, target)
            await respond(**reply)
        except Exception as e:
            self.logger.error(f"Admin action {action} by {user_id} failed: {e}", exc_info=True)
            await respond(text=f"❌ {action} failed: {e}")

    def _run_admin_action(self, action: str, target: Optional[str]) -> Dict:
        if action == "check_status":
            stats = self.service.global_stats()
            return {"blocks": build_admin_stats_blocks(stats), "text": "Caption bot status"}

        if action in ("reset_rate_limit", "reset_my_limit"):
            status = self.service.reset_limit(target)
            return {
                "text": (
                    f"🔄 <@{target}> has used {status.used}/{status.limit} today. "
                    "Usage comes from stored captions, so use `clear_records` to free quota."
                )
            }

        if action == "add_whitelist":
            whitelist = self.service.add_whitelist(target)
            return {"text": f"✅ <@{target}> whitelisted ({len(whitelist)} users on the whitelist)"}

        if action == "remove_whitelist":
            whitelist = self.service.remove_whitelist(target)
            return {"text": f"✅ <@{target}> removed from whitelist ({len(whitelist)} users remain)"}

        result = self.service.clear_records(target)
        return {"text": f"🗑️ {result['message']}"}

    # ------------------------------------------------------------------
    # Service loop
    # ------------------------------------------------------------------

    async def run(self):
        """
        Main agent loop - starts Socket Mode handler (blocks indefinitely)
        """
        self.logger.info("Starting caption agent with Socket Mode...")

        try:
            await self._health_check()

            self.socket_handler = AsyncSocketModeHandler(self.app, self.app_token)

            self.logger.info("✅ Caption agent connected and ready")
            await self.notify("Caption Bot", "Caption agent started and connected")

            # This blocks forever, listening for events
            await self.socket_handler.start_async()

        except KeyboardInterrupt:
            self.logger.info("Received shutdown signal")
            await self.notify("Caption Bot", "Caption agent shutting down")

        except Exception as e:
            self.logger.error(f"Fatal error in caption agent: {e}", exc_info=True)
            await self.notify("Caption Bot Error", f"⚠️ Caption agent crashed: {e}")
            raise

    async def _health_check(self):
        """Check if all dependencies are available"""
        health = self.service.health()

        for component, ok in health.items():
            if ok:
                self.logger.info(f"✅ {component} OK")
            else:
                self.logger.warning(f"⚠️ {component} unavailable")

        if not health["vision_provider"]:
            self.logger.warning("⚠️ No Gemini keys configured, every request will use template captions")

        # Slack auth is the only fatal check
        try:
            auth_test = await self.app.client.auth_test()
            bot_name = auth_test.get("user", "Unknown")
            self.logger.info(f"✅ Slack auth OK (bot: {bot_name})")
        except SlackApiError as e:
            self.logger.error(f"❌ Slack auth failed: {e}")
            raise RuntimeError(f"Health check failed: Slack auth failed: {e}")
