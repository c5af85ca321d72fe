"""
Caption Service - the caller-facing API shared by the Slack agent and the HTTP API.

Ties together the caption generator, the quota tracker, the caption store and
the image store. One instance is built per process so both front ends see the
same whitelist and the same key rotation state.
"""

import asyncio
import functools
import logging
import os
from typing import Dict, Iterable, List, Optional, Tuple, Union

from clients.caption_store import CaptionRecord, CaptionStore, JsonCaptionStore
from clients.image_store import LocalImageStore
from providers.gemini_adapter import GeminiVisionProvider
from services.caption_extractor import CaptionResult
from services.caption_generator import CaptionGenerator
from services.exceptions import (
    OwnershipError,
    QuotaExceededError,
    RecordNotFoundError,
    ValidationError,
)
from services.moods import MAX_MOOD_LENGTH, available_moods
from services.quota_tracker import QuotaStatus, QuotaTracker

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50


async def run_blocking(func, *args, **kwargs):
    """Run store and file I/O in the default executor so the event loop keeps serving."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


class CaptionService:
    """Generate, persist, list and administer captions."""

    def __init__(
        self,
        generator: CaptionGenerator,
        tracker: QuotaTracker,
        store: CaptionStore,
        image_store: LocalImageStore,
        admin_ids: Optional[Iterable[str]] = None,
    ):
        self.generator = generator
        self.tracker = tracker
        self.store = store
        self.image_store = image_store
        self.admin_ids = set(admin_ids or [])

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_captions(
        self, image_ref: Union[bytes, str], mood: str, username: str, mime_type: Optional[str] = None
    ) -> CaptionResult:
        """Generate captions without touching quota or storage."""
        return await self.generator.generate_captions(image_ref, mood, username, mime_type)

    def check_quota(self, user_id: str) -> QuotaStatus:
        return self.tracker.get_user_status(user_id)

    def authorize(self, user_id: str) -> QuotaStatus:
        """
        Gate a request on the user's quota.

        Raises:
            QuotaExceededError: If the user has no requests left today
        """
        status = self.tracker.can_make_request(user_id)
        if not status.allowed:
            logger.info(f"User {user_id} is rate limited ({status.used}/{status.limit})")
            raise QuotaExceededError(status)
        return status

    @staticmethod
    def validate_mood(mood: Optional[str]) -> str:
        mood = (mood or "").strip()
        if not mood:
            raise ValidationError("A mood is required")
        if len(mood) > MAX_MOOD_LENGTH:
            raise ValidationError(f"Mood must be at most {MAX_MOOD_LENGTH} characters")
        return mood

    async def create_captions(
        self,
        user_id: str,
        username: str,
        image: Optional[Union[bytes, str]] = None,
        mood: str = "",
        image_name: str = "",
        mime_type: Optional[str] = None,
        image_id: Optional[str] = None,
    ) -> Tuple[CaptionRecord, QuotaStatus]:
        """
        Full request: validate, authorize, store the image, generate, persist.

        Args:
            user_id: Requesting user
            username: Display name for fallback hashtags
            image: Raw bytes or an http(s) URL
            mood: Target mood
            image_name: Original file name
            mime_type: Declared MIME type of raw bytes
            image_id: Id of an already uploaded image (instead of image)

        Returns:
            (persisted record, quota status after the request)

        Raises:
            ValidationError: Bad mood, image or image id
            QuotaExceededError: User is over the daily limit
            StorageError: Record could not be persisted
        """
        mood = self.validate_mood(mood)
        if not user_id:
            raise ValidationError("A user id is required")
        if image is None and not image_id:
            raise ValidationError("An image or image_id is required")

        await run_blocking(self.authorize, user_id)

        image_url = ""
        if image_id:
            info = await run_blocking(self.image_store.get_info, image_id)
            data = await run_blocking(self.image_store.load, image_id)
            if info is None or data is None:
                raise ValidationError(f"Unknown image id: {image_id}")
            image_ref = data
            image_url = info["url"]
            mime_type = info.get("content_type")
            image_name = image_name or info.get("name", "")
        elif isinstance(image, bytes):
            stored = await run_blocking(
                self.image_store.store, image, name=image_name, user_id=user_id, content_type=mime_type
            )
            image_ref = image
            image_id = stored.id
            image_url = stored.url
            mime_type = stored.content_type
            image_name = image_name or stored.name
        else:
            image_ref = image
            image_url = image

        result = await self.generator.generate_captions(image_ref, mood, username, mime_type)

        record = CaptionRecord(
            user_id=user_id,
            username=username,
            mood=mood,
            captions=list(result.captions),
            source=result.source.value,
            image_url=image_url,
            image_name=image_name or "image",
            image_id=image_id,
            created_at=self.tracker.clock(),
        )
        await run_blocking(self.store.insert, record)
        logger.info(f"✅ Saved captions {record.id} for {user_id} ({record.source})")

        status = await run_blocking(self.tracker.get_user_status, user_id)
        return record, status

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def history(self, user_id: str, page: int = 1, limit: int = 10) -> Tuple[List[CaptionRecord], int]:
        """
        One page of a user's records, newest first.

        Returns:
            (records on the page, total records of the user)
        """
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        records = self.store.find_where(user_id=user_id, sort_desc=True, skip=(page - 1) * limit, limit=limit)
        total = self.store.count_where(user_id=user_id)
        return records, total

    def get_record(self, record_id: str, user_id: str) -> CaptionRecord:
        """
        Raises:
            RecordNotFoundError: No such record
            OwnershipError: Record belongs to another user
        """
        record = self.store.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"Caption {record_id} not found")
        if record.user_id != user_id:
            raise OwnershipError(f"Caption {record_id} belongs to another user")
        return record

    def delete_record(self, record_id: str, user_id: str) -> CaptionRecord:
        """Delete an owned record together with its stored image."""
        record = self.get_record(record_id, user_id)
        self.store.delete(record_id)
        if record.image_id:
            self.image_store.delete(record.image_id)
        return record

    def user_stats(self, user_id: str) -> Dict:
        return self.store.user_stats(user_id)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def is_admin(self, user_id: str) -> bool:
        """Configured admins and whitelisted users may run admin actions."""
        return user_id in self.admin_ids or self.tracker.is_whitelisted(user_id)

    def add_whitelist(self, user_id: str) -> List[str]:
        return self.tracker.add_to_whitelist(user_id)

    def remove_whitelist(self, user_id: str) -> List[str]:
        return self.tracker.remove_from_whitelist(user_id)

    def clear_records(self, user_id: str) -> Dict:
        return self.tracker.clear_user_records(user_id)

    def reset_limit(self, user_id: str) -> QuotaStatus:
        return self.tracker.reset_user_limit(user_id)

    def global_stats(self) -> Dict:
        stats = self.tracker.get_global_stats()
        stats["whitelist"] = self.tracker.get_whitelist()
        stats["moods"] = self.store.mood_stats()
        return stats

    def available_moods(self) -> Dict:
        return available_moods()

    def health(self) -> Dict[str, bool]:
        """Component checks for the detailed health endpoint."""
        try:
            self.store.count_where()
            store_ok = True
        except Exception as e:
            logger.warning(f"Caption store health check failed: {e}")
            store_ok = False
        return {
            "caption_store": store_ok,
            "image_store": self.image_store.health_check(),
            "vision_provider": self.generator.provider.health_check(),
        }


def build_caption_service(config: Dict) -> CaptionService:
    """
    Build the shared service from the launcher's config dict.

    Args:
        config: Keys as produced by services.caption_config.build_config()

    Returns:
        CaptionService backed by JSON/local-directory storage and Gemini
    """
    data_dir = config.get("data_dir", "./data")
    store = JsonCaptionStore(os.path.join(data_dir, "captions.json"))
    image_store = LocalImageStore(
        os.path.join(data_dir, "images"),
        public_base_url=config.get("public_base_url", "http://localhost:9520"),
    )
    provider = GeminiVisionProvider(
        api_keys=config.get("gemini_keys"),
        model_name=config.get("gemini_model", "gemini-2.0-flash"),
    )
    tracker = QuotaTracker(
        store,
        daily_limit=config.get("daily_limit", 25),
        utc_offset_hours=config.get("utc_offset_hours", 0),
        fail_open=config.get("fail_open", True),
        whitelist=config.get("whitelist", []),
    )
    logger.info(
        f"Caption service: data_dir={data_dir}, limit={tracker.daily_limit}/day, "
        f"fail_open={tracker.fail_open}, whitelist={len(tracker.get_whitelist())}"
    )
    return CaptionService(
        generator=CaptionGenerator(provider),
        tracker=tracker,
        store=store,
        image_store=image_store,
        admin_ids=config.get("admin_users", []),
    )
