"""
Quota Tracker - per-user daily request limits.

Usage is never counted separately: a user's used-count for today is the
number of their caption records created since the start of the current
calendar day, so persisting a record is what consumes quota. The day is
defined by a fixed UTC offset, not the host timezone.

Whitelisted users bypass the limit without touching storage. The whitelist
lives in memory only and is lost on restart.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from clients.caption_store import CaptionStore, utcnow
from services.exceptions import QuotaStoreError, StorageError

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 25
UNLIMITED = 999999
APPROACHING_LIMIT_THRESHOLD = 0.8


@dataclass
class QuotaStatus:
    """Snapshot of a user's quota for the current day."""

    user_id: str
    used: int
    remaining: int
    limit: int
    reset_at: datetime
    whitelisted: bool = False
    allowed: bool = True

    @property
    def percentage_used(self) -> int:
        if self.limit <= 0:
            return 100
        return round(self.used / self.limit * 100)

    @property
    def is_limited(self) -> bool:
        return self.remaining == 0

    def to_dict(self) -> Dict:
        return {
            "user_id": self.user_id,
            "used": self.used,
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_at": self.reset_at.isoformat(),
            "whitelisted": self.whitelisted,
            "allowed": self.allowed,
            "percentage_used": self.percentage_used,
            "is_limited": self.is_limited,
        }


class QuotaTracker:
    """Answers "may this user generate captions now?" from the caption ledger."""

    def __init__(
        self,
        store: CaptionStore,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        utc_offset_hours: float = 0,
        fail_open: bool = True,
        whitelist: Optional[Iterable[str]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize quota tracker

        Args:
            store: Caption store used as the usage ledger
            daily_limit: Requests allowed per user per day
            utc_offset_hours: Fixed offset defining the calendar day
            fail_open: Allow requests when the ledger cannot be read
            whitelist: Initial unlimited user ids
            clock: Returns the current timezone-aware time
        """
        self.store = store
        self.daily_limit = daily_limit
        self.tz = timezone(timedelta(hours=utc_offset_hours))
        self.fail_open = fail_open
        self.clock = clock
        self._whitelist = set(whitelist or [])

    # ------------------------------------------------------------------
    # Day window
    # ------------------------------------------------------------------

    def day_window(self) -> Tuple[datetime, datetime]:
        """Start (inclusive) and end (exclusive) of the current calendar day."""
        local_now = self.clock().astimezone(self.tz)
        start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        return start, start + timedelta(days=1)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _count_today(self, user_id: str, start: datetime, end: datetime) -> int:
        """
        Count the user's records in [start, end).

        Raises:
            QuotaStoreError: On any failure of the store, whatever it raised
        """
        try:
            return self.store.count_where(user_id=user_id, start=start, end=end)
        except Exception as e:
            raise QuotaStoreError(f"Quota count failed for {user_id}: {e}") from e

    def can_make_request(self, user_id: str, limit: Optional[int] = None) -> QuotaStatus:
        """
        Check whether a user may make another request today.

        Args:
            user_id: User to check
            limit: Override for the daily limit

        Returns:
            QuotaStatus; allowed is False once today's records reach the limit
        """
        limit = self.daily_limit if limit is None else limit
        start, end = self.day_window()

        if user_id in self._whitelist:
            return QuotaStatus(
                user_id=user_id,
                used=0,
                remaining=UNLIMITED,
                limit=UNLIMITED,
                reset_at=end,
                whitelisted=True,
                allowed=True,
            )

        try:
            used = self._count_today(user_id, start, end)
        except QuotaStoreError as e:
            if self.fail_open:
                logger.error(f"❌ Quota lookup failed for {user_id}, allowing request: {e}")
                return QuotaStatus(user_id=user_id, used=0, remaining=limit, limit=limit, reset_at=end, allowed=True)
            logger.error(f"❌ Quota lookup failed for {user_id}, denying request: {e}")
            return QuotaStatus(user_id=user_id, used=0, remaining=0, limit=limit, reset_at=end, allowed=False)

        remaining = max(0, limit - used)
        return QuotaStatus(
            user_id=user_id,
            used=used,
            remaining=remaining,
            limit=limit,
            reset_at=end,
            allowed=remaining > 0,
        )

    def get_user_status(self, user_id: str, limit: Optional[int] = None) -> QuotaStatus:
        """Same view as can_make_request, for display only."""
        return self.can_make_request(user_id, limit)

    def is_approaching_limit(
        self,
        user_id: str,
        limit: Optional[int] = None,
        threshold: float = APPROACHING_LIMIT_THRESHOLD,
    ) -> bool:
        status = self.get_user_status(user_id, limit)
        if status.whitelisted:
            return False
        return status.used >= status.limit * threshold

    def get_user_history(self, user_id: str, days: int = 7) -> List[Dict]:
        """
        Per-day request counts for the last `days` calendar days.

        Returns:
            [{"date": "YYYY-MM-DD", "count": n}, ...] ascending, days with
            no requests omitted; empty on storage error
        """
        today_start, end = self.day_window()
        start = today_start - timedelta(days=max(days, 1) - 1)
        try:
            counts = self.store.aggregate_counts("day", start=start, end=end, user_id=user_id, tz=self.tz)
        except StorageError as e:
            logger.error(f"❌ Failed to load quota history for {user_id}: {e}")
            return []
        return [{"date": day, "count": counts[day]} for day in sorted(counts)]

    def get_global_stats(self) -> Dict:
        """Today's usage across all users; zeros on storage error."""
        start, end = self.day_window()
        try:
            per_user = self.store.aggregate_counts("user", start=start, end=end)
        except StorageError as e:
            logger.error(f"❌ Failed to load global quota stats: {e}")
            per_user = {}

        total_users = len(per_user)
        total_requests = sum(per_user.values())
        return {
            "total_users": total_users,
            "total_requests": total_requests,
            "average_requests_per_user": round(total_requests / total_users, 2) if total_users else 0,
            "max_requests_by_user": max(per_user.values()) if per_user else 0,
            "users_at_limit": sum(1 for count in per_user.values() if count >= self.daily_limit),
        }

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def reset_user_limit(self, user_id: str) -> QuotaStatus:
        """
        Soft reset: reports the user's status without deleting anything.

        Quota is derived from records, so only clear_user_records frees it.
        """
        logger.info(f"Soft quota reset requested for {user_id} (records kept)")
        return self.get_user_status(user_id)

    def clear_user_records(self, user_id: str) -> Dict:
        """
        Delete every record of a user, which restores their full quota.

        Raises:
            StorageError: If the records cannot be deleted
        """
        deleted = self.store.delete_where(user_id)
        logger.info(f"🔄 Cleared {deleted} records for {user_id}")
        return {
            "user_id": user_id,
            "deleted_count": deleted,
            "message": f"Cleared {deleted} records for user {user_id}",
        }

    def add_to_whitelist(self, user_id: str) -> List[str]:
        self._whitelist.add(user_id)
        logger.info(f"Added {user_id} to whitelist")
        return self.get_whitelist()

    def remove_from_whitelist(self, user_id: str) -> List[str]:
        self._whitelist.discard(user_id)
        logger.info(f"Removed {user_id} from whitelist")
        return self.get_whitelist()

    def get_whitelist(self) -> List[str]:
        return sorted(self._whitelist)

    def is_whitelisted(self, user_id: str) -> bool:
        return user_id in self._whitelist

    # ------------------------------------------------------------------
    # Reset time helpers
    # ------------------------------------------------------------------

    def time_until_reset(self, reset_at: datetime) -> Tuple[int, int, int]:
        """(hours, minutes, seconds) until reset_at, floored at zero."""
        seconds = max(0, int((reset_at - self.clock()).total_seconds()))
        return seconds // 3600, (seconds % 3600) // 60, seconds % 60

    def format_reset_time(self, reset_at: datetime) -> str:
        """Human countdown: "3h 12m", "4m 10s" or "9s"."""
        hours, minutes, seconds = self.time_until_reset(reset_at)
        if hours > 0:
            return f"{hours}h {minutes}m"
        if minutes > 0:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"
