"""
Slack Block Kit UI builders for caption results, history, quota and admin views.
"""

import logging
from typing import Dict, List

from clients.caption_store import CaptionRecord
from clients.image_store import MAX_IMAGE_BYTES
from services.moods import CORE_MOODS, SEASONAL_MOODS
from services.quota_tracker import QuotaStatus

logger = logging.getLogger(__name__)

HISTORY_PREVIEW_COUNT = 5
DM_HISTORY_COUNT = 10
COPY_ACTION_PREFIX = "copy_caption_"
MOOD_SELECT_ACTION = "mood_select"
DM_HISTORY_ACTION = "dm_history"


def _quota_line(status: QuotaStatus) -> str:
    if status.whitelisted:
        return "♾️ Unlimited requests (whitelisted)"
    return f"📊 {status.remaining}/{status.limit} requests left today"


def build_caption_blocks(record: CaptionRecord, status: QuotaStatus) -> List[Dict]:
    """Caption result with one copy button per caption.

    Args:
        record: Persisted caption record
        status: Quota status after this request

    Returns:
        List of Block Kit block dicts
    """
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "✨ Your Captions"},
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Mood:* {record.mood}\n*Image:* {record.image_name}"},
        },
        {"type": "divider"},
    ]

    for n, caption in enumerate(record.captions, 1):
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*{n}.* {caption}"},
            "accessory": {
                "type": "button",
                "text": {"type": "plain_text", "text": "📋 Copy"},
                "action_id": f"{COPY_ACTION_PREFIX}{n}",
                "value": caption,
            },
        })

    context = [_quota_line(status)]
    if record.source != "model":
        context.append("⚠️ AI analysis unavailable, these are template captions")

    blocks.append({
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": " • ".join(context)}],
    })
    return blocks


def build_history_blocks(records: List[CaptionRecord], total: int) -> List[Dict]:
    """Latest records with a button to get a fuller list by DM."""
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "📜 Caption History"},
        },
    ]

    if not records:
        blocks.append({
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": "No captions yet. DM me an image with a mood to get started!",
            },
        })
        return blocks

    for record in records[:HISTORY_PREVIEW_COUNT]:
        created = record.created_at.strftime("%Y-%m-%d %H:%M")
        blocks.append({
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"*{record.mood}* • _{created} UTC_\n{record.captions[0]}",
            },
        })

    blocks.append({
        "type": "context",
        "elements": [{
            "type": "mrkdwn",
            "text": f"Showing {min(len(records), HISTORY_PREVIEW_COUNT)} of {total} captions",
        }],
    })
    blocks.append({
        "type": "actions",
        "elements": [{
            "type": "button",
            "text": {"type": "plain_text", "text": "📨 Send to DM"},
            "action_id": DM_HISTORY_ACTION,
            "value": "dm_history",
        }],
    })
    return blocks


def build_dm_history_blocks(records: List[CaptionRecord]) -> List[Dict]:
    """Full captions of the latest records, sent as a DM."""
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"📜 Your last {len(records)} captions"},
        },
    ]
    for record in records[:DM_HISTORY_COUNT]:
        created = record.created_at.strftime("%Y-%m-%d %H:%M")
        captions = "\n".join(f"{n}. {c}" for n, c in enumerate(record.captions, 1))
        blocks.append({"type": "divider"})
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*{record.mood}* • _{created} UTC_\n{captions}"},
        })
    return blocks


def build_quota_blocks(status: QuotaStatus, reset_text: str, approaching: bool = False) -> List[Dict]:
    """Quota status with reset countdown."""
    if status.whitelisted:
        text = "♾️ You are whitelisted: no daily limit applies."
    else:
        text = (
            f"*Used today:* {status.used}/{status.limit} ({status.percentage_used}%)\n"
            f"*Remaining:* {status.remaining}\n"
            f"*Resets in:* {reset_text}"
        )

    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "📊 Your Caption Quota"},
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": text},
        },
    ]

    if approaching and not status.is_limited:
        blocks.append({
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": "⚠️ You are close to today's limit."}],
        })
    return blocks


def build_rate_limited_blocks(status: QuotaStatus, reset_text: str) -> List[Dict]:
    return [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"⏳ *Daily limit reached* ({status.used}/{status.limit} requests used).\n"
                    f"Your quota resets in *{reset_text}*."
                ),
            },
        },
    ]


def build_mood_picker_blocks(prompt: str = "🎨 Pick a mood for your image:") -> List[Dict]:
    """Static select with core and seasonal mood groups."""
    def _options(moods):
        return [{"text": {"type": "plain_text", "text": m}, "value": m} for m in moods]

    return [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": prompt},
            "accessory": {
                "type": "static_select",
                "action_id": MOOD_SELECT_ACTION,
                "placeholder": {"type": "plain_text", "text": "Choose a mood"},
                "option_groups": [
                    {"label": {"type": "plain_text", "text": "Core"}, "options": _options(CORE_MOODS)},
                    {"label": {"type": "plain_text", "text": "Seasonal"}, "options": _options(SEASONAL_MOODS)},
                ],
            },
        },
    ]


def build_help_blocks(daily_limit: int) -> List[Dict]:
    return [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "🤖 Caption Bot Help"},
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    "*How to use:*\n"
                    "1️⃣ DM me an image with a mood as the message text, e.g. `Fun / Playful`\n"
                    "2️⃣ Or send just the image and pick a mood from the menu\n"
                    "3️⃣ Copy your favourite caption with its 📋 button"
                ),
            },
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    "*Commands:*\n"
                    "`/caption [mood]` - caption your last image\n"
                    "`/caption-history` - your recent captions\n"
                    "`/caption-quota` - requests left today\n"
                    "`/caption-help` - this message"
                ),
            },
        },
        {
            "type": "context",
            "elements": [{
                "type": "mrkdwn",
                "text": (
                    f"{daily_limit} requests per day • JPEG, PNG, WebP, GIF • "
                    f"max {MAX_IMAGE_BYTES // (1024 * 1024)}MB"
                ),
            }],
        },
    ]


def build_admin_stats_blocks(stats: Dict) -> List[Dict]:
    whitelist = stats.get("whitelist", [])
    return [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "🛠️ Caption Bot Status"},
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*Users today:* {stats['total_users']}\n"
                    f"*Requests today:* {stats['total_requests']}\n"
                    f"*Average per user:* {stats['average_requests_per_user']}\n"
                    f"*Max by one user:* {stats['max_requests_by_user']}\n"
                    f"*Users at limit:* {stats['users_at_limit']}\n"
                    f"*Whitelist:* {', '.join(f'<@{u}>' for u in whitelist) or 'empty'}"
                ),
            },
        },
    ]
