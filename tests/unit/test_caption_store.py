"""
Unit tests for JsonCaptionStore and CaptionRecord.
"""

import json
import pytest
from datetime import datetime, timedelta, timezone

from clients.caption_store import CaptionRecord, JsonCaptionStore
from services.exceptions import StorageError
from tests.sample_data import make_record

NOON = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.mark.unit
class TestCaptionRecord:
    def test_round_trip_keeps_timezone(self):
        record = make_record(created_at=NOON)
        restored = CaptionRecord.from_dict(record.to_dict())
        assert restored == record
        assert restored.created_at.tzinfo is not None

    def test_naive_timestamps_are_read_as_utc(self):
        data = make_record(created_at=NOON).to_dict()
        data["created_at"] = "2025-06-15T12:00:00"
        data["updated_at"] = None
        restored = CaptionRecord.from_dict(data)
        assert restored.created_at == NOON
        assert restored.updated_at == NOON

    def test_updated_at_defaults_to_created_at(self):
        assert make_record(created_at=NOON).updated_at == NOON


@pytest.mark.unit
class TestJsonCaptionStore:
    """Persistence and queries."""

    def test_insert_then_get(self, caption_store):
        record = caption_store.insert(make_record())
        assert caption_store.get(record.id) == record

    def test_get_missing(self, caption_store):
        assert caption_store.get("nope") is None

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "captions.json")
        record = JsonCaptionStore(path).insert(make_record())
        assert JsonCaptionStore(path).get(record.id) == record

    def test_file_layout(self, caption_store):
        caption_store.insert(make_record())
        data = json.loads(caption_store.path.read_text())
        assert len(data["records"]) == 1
        assert not caption_store.path.with_suffix(".tmp").exists()

    def test_count_where_window_is_half_open(self, caption_store):
        caption_store.insert(make_record(created_at=NOON))
        caption_store.insert(make_record(created_at=NOON + timedelta(hours=12)))
        assert caption_store.count_where(user_id="U123", start=NOON, end=NOON + timedelta(hours=12)) == 1
        assert caption_store.count_where(user_id="U123") == 2
        assert caption_store.count_where(user_id="other") == 0

    def test_find_where_sorting_and_paging(self, caption_store):
        for hour in range(5):
            caption_store.insert(make_record(created_at=NOON + timedelta(hours=hour), image_name=f"img{hour}"))

        newest = caption_store.find_where(user_id="U123", limit=2)
        assert [r.image_name for r in newest] == ["img4", "img3"]

        page_two = caption_store.find_where(user_id="U123", skip=2, limit=2)
        assert [r.image_name for r in page_two] == ["img2", "img1"]

        oldest = caption_store.find_where(user_id="U123", sort_desc=False, limit=1)
        assert oldest[0].image_name == "img0"

    def test_find_where_by_mood(self, caption_store):
        caption_store.insert(make_record(mood="Calm"))
        caption_store.insert(make_record(mood="Bold"))
        assert [r.mood for r in caption_store.find_where(mood="Calm")] == ["Calm"]

    def test_delete(self, caption_store):
        record = caption_store.insert(make_record())
        assert caption_store.delete(record.id) is True
        assert caption_store.delete(record.id) is False
        assert caption_store.get(record.id) is None

    def test_delete_where(self, caption_store):
        caption_store.insert(make_record(user_id="U1"))
        caption_store.insert(make_record(user_id="U1"))
        caption_store.insert(make_record(user_id="U2"))
        assert caption_store.delete_where("U1") == 2
        assert caption_store.count_where() == 1

    def test_aggregate_by_user(self, caption_store):
        caption_store.insert(make_record(user_id="U1", created_at=NOON))
        caption_store.insert(make_record(user_id="U1", created_at=NOON))
        caption_store.insert(make_record(user_id="U2", created_at=NOON))
        assert caption_store.aggregate_counts("user") == {"U1": 2, "U2": 1}

    def test_aggregate_by_day_uses_timezone(self, caption_store):
        late = datetime(2025, 6, 15, 23, 0, tzinfo=timezone.utc)
        caption_store.insert(make_record(created_at=late))
        assert caption_store.aggregate_counts("day") == {"2025-06-15": 1}
        plus_two = timezone(timedelta(hours=2))
        assert caption_store.aggregate_counts("day", tz=plus_two) == {"2025-06-16": 1}

    def test_aggregate_rejects_unknown_grouping(self, caption_store):
        with pytest.raises(ValueError):
            caption_store.aggregate_counts("mood")

    def test_corrupt_file_raises_storage_error(self, caption_store):
        caption_store.path.write_text("{not json")
        with pytest.raises(StorageError):
            caption_store.count_where()

    def test_user_stats(self, caption_store):
        caption_store.insert(make_record(mood="Calm", created_at=NOON))
        caption_store.insert(make_record(mood="Bold", created_at=NOON + timedelta(hours=1)))
        stats = caption_store.user_stats("U123")
        assert stats["total_captions"] == 2
        assert stats["unique_moods"] == ["Bold", "Calm"]
        assert stats["first_used"] == NOON.isoformat()

    def test_user_stats_empty(self, caption_store):
        assert caption_store.user_stats("nobody")["total_captions"] == 0

    def test_mood_stats(self, caption_store):
        caption_store.insert(make_record(mood="Calm"))
        caption_store.insert(make_record(mood="Calm"))
        caption_store.insert(make_record(mood="Bold"))
        assert caption_store.mood_stats() == [
            {"mood": "Calm", "count": 2},
            {"mood": "Bold", "count": 1},
        ]
