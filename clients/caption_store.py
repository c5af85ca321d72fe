"""
Caption Store - persistent caption records, doubling as the quota ledger.

A user's usage for a day is the number of their records created inside that
day's window, so the store exposes count/aggregate queries instead of any
separate counter.

JsonCaptionStore keeps every record in a single JSON file, rewritten
atomically (temp file + rename) under a lock.
"""

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Dict, List, Optional

from services.exceptions import StorageError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CaptionRecord:
    """One persisted caption generation."""

    user_id: str
    mood: str
    captions: List[str]
    image_url: str = ""
    image_name: str = ""
    image_id: Optional[str] = None
    source: str = "model"
    username: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = self.created_at

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "CaptionRecord":
        values = dict(data)
        values["created_at"] = _parse_timestamp(values["created_at"])
        if values.get("updated_at"):
            values["updated_at"] = _parse_timestamp(values["updated_at"])
        values["captions"] = list(values.get("captions", []))
        return cls(**values)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _in_window(record: CaptionRecord, start: Optional[datetime], end: Optional[datetime]) -> bool:
    """Half-open window check: start <= created_at < end."""
    if start is not None and record.created_at < start:
        return False
    if end is not None and record.created_at >= end:
        return False
    return True


class CaptionStore(ABC):
    """
    Storage contract for caption records.

    Implementations wrap backend failures in StorageError. The quota tracker additionally wraps anything escaping
    count_where in QuotaStoreError before applying its fail-open policy.
    """

    @abstractmethod
    def insert(self, record: CaptionRecord) -> CaptionRecord:
        pass

    @abstractmethod
    def get(self, record_id: str) -> Optional[CaptionRecord]:
        pass

    @abstractmethod
    def count_where(
        self,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        pass

    @abstractmethod
    def find_where(
        self,
        user_id: Optional[str] = None,
        mood: Optional[str] = None,
        sort_desc: bool = True,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[CaptionRecord]:
        pass

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        pass

    @abstractmethod
    def delete_where(self, user_id: str) -> int:
        pass

    @abstractmethod
    def aggregate_counts(
        self,
        group_by: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        user_id: Optional[str] = None,
        tz: Optional[tzinfo] = None,
    ) -> Dict[str, int]:
        pass

    def user_stats(self, user_id: str) -> Dict:
        """Totals for one user: record count, distinct moods, first and last use."""
        records = self.find_where(user_id=user_id, sort_desc=False)
        if not records:
            return {
                "user_id": user_id,
                "total_captions": 0,
                "unique_moods": [],
                "first_used": None,
                "last_used": None,
            }
        return {
            "user_id": user_id,
            "total_captions": len(records),
            "unique_moods": sorted({r.mood for r in records}),
            "first_used": records[0].created_at.isoformat(),
            "last_used": records[-1].created_at.isoformat(),
        }

    def mood_stats(self) -> List[Dict]:
        """Record count per mood, most used first."""
        counts: Dict[str, int] = {}
        for record in self.find_where():
            counts[record.mood] = counts.get(record.mood, 0) + 1
        return [
            {"mood": mood, "count": count}
            for mood, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        ]


class JsonCaptionStore(CaptionStore):
    """
    All records in one JSON file.

    File schema:
        {"records": [{"id": "...", "user_id": "...", "created_at": "...", ...}]}
    """

    def __init__(self, path: str):
        """
        Initialize JSON caption store

        Args:
            path: Location of the JSON file (parent directories are created)
        """
        self.path = Path(path)
        self._lock = threading.RLock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> List[CaptionRecord]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text())
            return [CaptionRecord.from_dict(item) for item in data.get("records", [])]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"❌ Failed to read caption store {self.path}: {e}")
            raise StorageError(f"Caption store unreadable: {e}") from e

    def _save(self, records: List[CaptionRecord]) -> None:
        try:
            temp_path = self.path.with_suffix(".tmp")
            temp_path.write_text(json.dumps({"records": [r.to_dict() for r in records]}, indent=2))
            temp_path.replace(self.path)
        except OSError as e:
            logger.error(f"❌ Failed to write caption store {self.path}: {e}")
            raise StorageError(f"Caption store not writable: {e}") from e

    def insert(self, record: CaptionRecord) -> CaptionRecord:
        with self._lock:
            records = self._load()
            records.append(record)
            self._save(records)
        logger.debug(f"Stored caption record {record.id} for user {record.user_id}")
        return record

    def get(self, record_id: str) -> Optional[CaptionRecord]:
        with self._lock:
            for record in self._load():
                if record.id == record_id:
                    return record
        return None

    def count_where(self, user_id=None, start=None, end=None) -> int:
        with self._lock:
            records = self._load()
        return sum(
            1 for r in records
            if (user_id is None or r.user_id == user_id) and _in_window(r, start, end)
        )

    def find_where(self, user_id=None, mood=None, sort_desc=True, skip=0, limit=None) -> List[CaptionRecord]:
        with self._lock:
            records = self._load()
        matches = [
            r for r in records
            if (user_id is None or r.user_id == user_id) and (mood is None or r.mood == mood)
        ]
        matches.sort(key=lambda r: r.created_at, reverse=sort_desc)
        matches = matches[skip:]
        if limit is not None:
            matches = matches[:limit]
        return matches

    def delete(self, record_id: str) -> bool:
        with self._lock:
            records = self._load()
            remaining = [r for r in records if r.id != record_id]
            if len(remaining) == len(records):
                return False
            self._save(remaining)
        logger.info(f"Deleted caption record {record_id}")
        return True

    def delete_where(self, user_id: str) -> int:
        with self._lock:
            records = self._load()
            remaining = [r for r in records if r.user_id != user_id]
            deleted = len(records) - len(remaining)
            if deleted:
                self._save(remaining)
        logger.info(f"Deleted {deleted} caption records for user {user_id}")
        return deleted

    def aggregate_counts(self, group_by, start=None, end=None, user_id=None, tz=None) -> Dict[str, int]:
        """
        Count records per user or per calendar day.

        Args:
            group_by: "user" or "day"
            start: Inclusive lower bound on created_at
            end: Exclusive upper bound on created_at
            user_id: Restrict to one user
            tz: Timezone defining the day for group_by="day" (default UTC)

        Returns:
            Mapping of user id or "YYYY-MM-DD" to count
        """
        if group_by not in ("user", "day"):
            raise ValueError(f"Unsupported group_by: {group_by}")

        with self._lock:
            records = self._load()

        counts: Dict[str, int] = {}
        for record in records:
            if user_id is not None and record.user_id != user_id:
                continue
            if not _in_window(record, start, end):
                continue
            if group_by == "user":
                key = record.user_id
            else:
                key = record.created_at.astimezone(tz or timezone.utc).strftime("%Y-%m-%d")
            counts[key] = counts.get(key, 0) + 1
        return counts
