"""
Integration Tests: Caption HTTP API

Exercises the FastAPI routes against a real CaptionService:
- Caption generation from uploaded images and URLs
- History paging, ownership checks and deletion
- Quota status and 429 responses
- Admin token enforcement
"""

import importlib
from datetime import timedelta

import pytest
from unittest.mock import patch

from fastapi.testclient import TestClient

from services.caption_api import api as caption_api
from tests.sample_data import MODEL_CAPTIONS, PNG_BYTES, make_record

MOOD = "🔥 Bold / Confident"


def upload(api_client, user_id="U1"):
    response = api_client.post(
        "/api/upload/image",
        files={"image": ("sunset.png", PNG_BYTES, "image/png")},
        data={"user_id": user_id},
    )
    assert response.status_code == 200
    return response.json()


@pytest.mark.integration
class TestHealth:
    def test_root(self, api_client):
        assert api_client.get("/").json()["status"] == "running"

    def test_basic_health(self, api_client):
        body = api_client.get("/api/health").json()
        assert body["status"] == "OK"
        assert body["version"] == "1.0.0"

    def test_detailed_health(self, api_client):
        body = api_client.get("/api/health/detailed").json()
        assert body["status"] == "OK"
        assert body["services"]["vision_provider"] == "connected"
        assert body["quota"]["daily_limit"] == 25


@pytest.mark.integration
class TestUploadAndGenerate:
    def test_upload_then_serve(self, api_client):
        uploaded = upload(api_client)
        assert uploaded["content_type"] == "image/png"
        assert uploaded["image_url"].endswith(f"/images/{uploaded['image_id']}")

        served = api_client.get(f"/images/{uploaded['image_id']}")
        assert served.status_code == 200
        assert served.content == PNG_BYTES
        assert served.headers["content-type"] == "image/png"

        info = api_client.get(f"/api/upload/image/{uploaded['image_id']}").json()
        assert info["image"]["user_id"] == "U1"

    def test_upload_rejects_non_image(self, api_client):
        response = api_client.post(
            "/api/upload/image",
            files={"image": ("notes.txt", b"hello", "text/plain")},
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_generate_from_upload(self, api_client):
        uploaded = upload(api_client)
        response = api_client.post(
            "/api/captions/generate",
            json={"user_id": "U1", "mood": MOOD, "image_id": uploaded["image_id"], "username": "jdoe"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["captions"] == MODEL_CAPTIONS
        assert body["source"] == "model"
        assert body["rate_limit"]["remaining"] == 24
        assert body["caption"]["image_id"] == uploaded["image_id"]

    def test_generate_from_url(self, api_client):
        with patch("services.caption_generator.fetch_image", return_value=(PNG_BYTES, "image/png")):
            response = api_client.post(
                "/api/captions/generate",
                json={"user_id": "U1", "mood": MOOD, "image_url": "https://example.com/a.png"},
            )
        assert response.status_code == 200
        assert response.json()["caption"]["image_url"] == "https://example.com/a.png"

    def test_generate_requires_image(self, api_client):
        response = api_client.post("/api/captions/generate", json={"user_id": "U1", "mood": MOOD})
        assert response.status_code == 400

    def test_generate_requires_mood(self, api_client):
        uploaded = upload(api_client)
        response = api_client.post(
            "/api/captions/generate",
            json={"user_id": "U1", "mood": "", "image_id": uploaded["image_id"]},
        )
        assert response.status_code == 400

    def test_rate_limited(self, api_client, caption_store, clock):
        for _ in range(25):
            caption_store.insert(make_record(user_id="U1", created_at=clock()))
        uploaded = upload(api_client)
        response = api_client.post(
            "/api/captions/generate",
            json={"user_id": "U1", "mood": MOOD, "image_id": uploaded["image_id"]},
        )
        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "Rate limit exceeded"
        assert body["rate_limit"]["remaining"] == 0

    def test_delete_image_ownership(self, api_client):
        uploaded = upload(api_client, user_id="U1")
        url = f"/api/upload/image/{uploaded['image_id']}"
        assert api_client.request("DELETE", url, json={"user_id": "U2"}).status_code == 403
        assert api_client.request("DELETE", url, json={"user_id": "U1"}).status_code == 200
        assert api_client.get(url).status_code == 404


@pytest.mark.integration
class TestCaptionRecords:
    def test_history_pagination(self, api_client, caption_store):
        for _ in range(12):
            caption_store.insert(make_record(user_id="U1"))
        body = api_client.get("/api/captions/history/U1", params={"page": 2, "limit": 5}).json()
        assert len(body["captions"]) == 5
        assert body["pagination"] == {
            "page": 2,
            "limit": 5,
            "total": 12,
            "pages": 3,
            "has_next": True,
            "has_prev": True,
        }

    def test_history_limit_is_capped(self, api_client):
        assert api_client.get("/api/captions/history/U1", params={"limit": 51}).status_code == 422

    def test_get_and_delete_record(self, api_client, caption_store):
        record = caption_store.insert(make_record(user_id="U1"))
        url = f"/api/captions/{record.id}"

        assert api_client.get(url, params={"user_id": "U2"}).status_code == 403
        assert api_client.get(url, params={"user_id": "U1"}).json()["caption"]["id"] == record.id

        assert api_client.request("DELETE", url, json={"user_id": "U2"}).status_code == 403
        assert api_client.request("DELETE", url, json={"user_id": "U1"}).status_code == 200
        assert api_client.get(url, params={"user_id": "U1"}).status_code == 404

    def test_moods(self, api_client):
        moods = api_client.get("/api/captions/moods/available").json()["moods"]
        assert moods["total"] == 47


@pytest.mark.integration
class TestQuota:
    def test_quota_status(self, api_client, caption_store, clock):
        caption_store.insert(make_record(user_id="U1", created_at=clock()))
        body = api_client.get("/api/quota/U1").json()
        assert body["quota"]["used"] == 1
        assert body["quota"]["remaining"] == 24
        assert body["approaching_limit"] is False
        assert body["resets_in"]

    def test_quota_history(self, api_client, caption_store, clock):
        caption_store.insert(make_record(user_id="U1", created_at=clock()))
        body = api_client.get("/api/quota/U1/history", params={"days": 3}).json()
        assert body["history"] == [{"date": "2025-06-15", "count": 1}]

    def test_quota_history_bounds(self, api_client):
        assert api_client.get("/api/quota/U1/history", params={"days": 91}).status_code == 422


@pytest.mark.integration
class TestAdmin:
    def test_requires_token(self, api_client):
        assert api_client.get("/api/admin/stats").status_code == 403
        assert api_client.get("/api/admin/stats", headers={"X-Admin-Token": "wrong"}).status_code == 403

    def test_disabled_without_configured_token(self, api_client, admin_headers):
        from services.caption_api import api as caption_api

        caption_api.configure({"admin_token": ""})
        assert api_client.get("/api/admin/stats", headers=admin_headers).status_code == 503

    def test_whitelist_round_trip(self, api_client, admin_headers):
        added = api_client.post("/api/admin/whitelist/UVIP", headers=admin_headers).json()
        assert added["whitelist"] == ["UVIP"]
        assert api_client.get("/api/quota/UVIP").json()["quota"]["whitelisted"] is True

        removed = api_client.delete("/api/admin/whitelist/UVIP", headers=admin_headers).json()
        assert removed["whitelist"] == []

    def test_clear_records(self, api_client, admin_headers, caption_store):
        caption_store.insert(make_record(user_id="U1"))
        caption_store.insert(make_record(user_id="U1"))
        body = api_client.delete("/api/admin/records/U1", headers=admin_headers).json()
        assert body["deleted_count"] == 2
        assert caption_store.count_where(user_id="U1") == 0

    def test_stats(self, api_client, admin_headers, caption_store, clock):
        caption_store.insert(make_record(user_id="U1", created_at=clock()))
        stats = api_client.get("/api/admin/stats", headers=admin_headers).json()["stats"]
        assert stats["total_requests"] == 1
        assert stats["total_users"] == 1


@pytest.fixture
def standalone_api(monkeypatch, tmp_path):
    """The API module re-imported from a fresh environment, with no injected service."""
    env = {
        "CAPTION_DAILY_LIMIT": "3",
        "QUOTA_FAIL_OPEN": "false",
        "QUOTA_WHITELIST": "UVIP",
        "QUOTA_UTC_OFFSET_HOURS": "2",
        "CAPTION_ADMIN_USERS": "UADMIN",
        "CAPTION_DATA_DIR": str(tmp_path / "data"),
        "GEMINI_KEYS": "k1",
    }
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    monkeypatch.delenv("NTFY_TOPIC", raising=False)
    caption_api.set_service(None)

    with patch("providers.gemini_adapter.genai"):
        yield importlib.reload(caption_api)

    caption_api.set_service(None)
    monkeypatch.undo()
    importlib.reload(caption_api)


@pytest.mark.integration
class TestStandaloneStartup:
    def test_env_quota_settings_reach_tracker(self, standalone_api):
        with TestClient(standalone_api.app) as client:
            assert client.get("/api/health").status_code == 200
            tracker = standalone_api.service.tracker
            assert tracker.daily_limit == 3
            assert tracker.fail_open is False
            assert tracker.get_whitelist() == ["UVIP"]
            assert tracker.tz.utcoffset(None) == timedelta(hours=2)
            assert standalone_api.service.admin_ids == {"UADMIN"}

            assert client.get("/api/quota/U1").json()["quota"]["limit"] == 3
            assert client.get("/api/quota/UVIP").json()["quota"]["whitelisted"] is True

    def test_config_matches_launcher(self, standalone_api):
        assert standalone_api.CONFIG["daily_limit"] == 3
        assert standalone_api.CONFIG["whitelist"] == ["UVIP"]
        assert standalone_api.CONFIG["gemini_keys"] == ["k1"]
