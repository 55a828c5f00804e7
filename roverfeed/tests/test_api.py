"""API endpoint tests"""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from roverfeed.api.deps import get_db, get_rate_limiter, get_scheduler, hash_api_key
from roverfeed.core.config import settings
from roverfeed.core.cursors import CursorStore
from roverfeed.ingestion.extract import NormalizedRecord
from roverfeed.main import app
from roverfeed.models import ApiKey
from roverfeed.services.ingestion_processor import IngestionProcessor
from roverfeed.services.rate_limiter import MemoryCounterStore, RateLimiter
from roverfeed.services.scheduler import IncrementalScheduler

FIXED_NOW = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def limiter():
    return RateLimiter(store=MemoryCounterStore(), clock=lambda: FIXED_NOW)


@pytest.fixture
def feed(perseverance_feed, perseverance_image):
    return perseverance_feed(latest_sol=2, images_by_sol={2: [perseverance_image("P-2", 2)]})


@pytest.fixture
def client(db_session, limiter, client_factory, feed):
    """Test client wired to the in-memory database and a fake upstream"""

    def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_scheduler] = lambda: IncrementalScheduler(
        db_session, client_factory=client_factory(feed), window_delay=0
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def api_key(db_session):
    def issue(raw="test-key", tier="free", identity="alice@example.com", active=True):
        db_session.add(ApiKey(key_hash=hash_api_key(raw), identity=identity, tier=tier, is_active=active))
        db_session.commit()
        return raw

    return issue


@pytest.fixture
def photos(db_session):
    records = [
        NormalizedRecord(
            external_id=f"img-{i}",
            source_id="perseverance",
            sol=100 + (i % 2),
            camera_name="NAVCAM_LEFT" if i < 3 else "MCZ_RIGHT",
            img_src_full=f"https://img.test/{i}.png",
            raw_payload={"imageid": f"img-{i}", "extra": i},
        )
        for i in range(5)
    ]
    IngestionProcessor(db_session).ingest("perseverance", records)


class TestPhotosAPI:
    """Rate-limited read API"""

    def test_requires_api_key(self, client):
        response = client.get("/api/v1/photos")
        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "Unauthorized"

    def test_rejects_unknown_and_inactive_keys(self, client, api_key):
        api_key("revoked", active=False)
        assert client.get("/api/v1/photos", headers={"X-API-Key": "nope"}).status_code == 401
        assert client.get("/api/v1/photos", headers={"X-API-Key": "revoked"}).status_code == 401

    def test_lists_photos_with_rate_limit_headers(self, client, api_key, photos):
        key = api_key()
        response = client.get("/api/v1/photos", headers={"X-API-Key": key})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 5
        assert len(body["data"]) == 5
        assert body["data"][0]["sol"] == 101
        assert "imgSrcFull" in body["data"][0]

        assert response.headers["X-RateLimit-Limit-Hour"] == "60"
        assert response.headers["X-RateLimit-Remaining-Hour"] == "59"
        assert response.headers["X-RateLimit-Limit-Day"] == "500"
        assert response.headers["X-RateLimit-Remaining-Day"] == "499"
        assert response.headers["X-RateLimit-Tier"] == "free"
        assert response.headers["X-RateLimit-Reset-Hour"] == str(int(FIXED_NOW.timestamp()) + 3600)

    def test_filters(self, client, api_key, photos):
        key = api_key()
        by_sol = client.get("/api/v1/photos", params={"sol": 100}, headers={"X-API-Key": key}).json()
        assert {p["sol"] for p in by_sol["data"]} == {100}

        by_camera = client.get("/api/v1/photos", params={"camera": "mcz_right"}, headers={"X-API-Key": key}).json()
        assert by_camera["total"] == 2
        assert {p["camera"] for p in by_camera["data"]} == {"MCZ_RIGHT"}

        paged = client.get("/api/v1/photos", params={"limit": 2, "offset": 4}, headers={"X-API-Key": key}).json()
        assert len(paged["data"]) == 1

    def test_photo_detail(self, client, api_key, photos):
        key = api_key()
        response = client.get("/api/v1/photos/img-3", headers={"X-API-Key": key})
        assert response.status_code == 200
        assert response.json()["rawPayload"] == {"imageid": "img-3", "extra": 3}

        assert client.get("/api/v1/photos/missing", headers={"X-API-Key": key}).status_code == 404

    def test_free_tier_61st_request_is_rejected(self, client, api_key):
        key = api_key()
        for _ in range(60):
            assert client.get("/api/v1/photos", headers={"X-API-Key": key}).status_code == 200

        response = client.get("/api/v1/photos", headers={"X-API-Key": key})

        assert response.status_code == 429
        assert response.headers["X-RateLimit-Remaining-Hour"] == "0"
        body = response.json()
        assert body["error"] == "Too Many Requests"
        assert body["limit"] == 60
        assert body["tier"] == "free"
        assert body["resetAt"] == int(FIXED_NOW.timestamp()) + 3600

    def test_keys_of_one_identity_share_a_quota(self, client, api_key, limiter):
        api_key("key-1", tier="free", identity="bob")
        api_key("key-2", tier="free", identity="bob")
        client.get("/api/v1/photos", headers={"X-API-Key": "key-1"})
        response = client.get("/api/v1/photos", headers={"X-API-Key": "key-2"})
        assert response.headers["X-RateLimit-Remaining-Hour"] == "58"


class TestScraperAPI:
    """Scraper control endpoints"""

    def test_incremental_run(self, client, db_session):
        response = client.post("/scraper/perseverance/incremental", params={"lookback": 7})

        assert response.status_code == 200
        body = response.json()
        assert body["source"] == "perseverance"
        assert body["status"] == "success"
        assert body["fromWindow"] == 0
        assert body["toWindow"] == 2
        assert body["windowsScraped"] == 3
        assert body["recordsAdded"] == 1
        assert body["failedWindows"] == []
        assert CursorStore(db_session).get("perseverance").last_watermark == 2

    def test_unknown_source_is_404(self, client):
        assert client.post("/scraper/opportunity/incremental").status_code == 404
        assert client.get("/scraper/opportunity/status").status_code == 404

    def test_lookback_is_validated(self, client):
        assert client.post("/scraper/perseverance/incremental", params={"lookback": 366}).status_code == 422
        assert client.post("/scraper/perseverance/incremental", params={"lookback": -1}).status_code == 422

    def test_run_in_progress_is_409(self, client, db_session):
        CursorStore(db_session).claim("perseverance")
        assert client.post("/scraper/perseverance/incremental").status_code == 409

    def test_status_endpoints(self, client, db_session):
        assert client.get("/scraper/perseverance/status").status_code == 404

        client.post("/scraper/perseverance/incremental")
        status = client.get("/scraper/perseverance/status").json()
        assert status["sourceId"] == "perseverance"
        assert status["lastWatermark"] == 2
        assert status["lastRunStatus"] == "success"
        assert status["recordsAddedLastRun"] == 1

        all_status = client.get("/scraper/status").json()
        assert [s["sourceId"] for s in all_status] == ["perseverance"]

    def test_reset_state(self, client):
        response = client.post("/scraper/curiosity/reset-state", params={"window": 4100})
        assert response.status_code == 200
        assert response.json()["lastWatermark"] == 4100

    def test_reset_state_during_a_run_is_409(self, client, db_session):
        CursorStore(db_session).claim("curiosity")
        response = client.post("/scraper/curiosity/reset-state", params={"window": 10})
        assert response.status_code == 409
        assert CursorStore(db_session).get("curiosity").last_watermark == 0

    def test_runs_history(self, client):
        client.post("/scraper/perseverance/incremental")
        runs = client.get("/scraper/runs", params={"source": "perseverance"}).json()
        assert len(runs) == 1
        assert runs[0]["status"] == "success"
        assert runs[0]["recordsAdded"] == 1

    def test_admin_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "s3cret")
        assert client.get("/scraper/status").status_code == 401
        assert client.get("/scraper/status", headers={"X-Admin-Key": "wrong"}).status_code == 401
        assert client.get("/scraper/status", headers={"X-Admin-Key": "s3cret"}).status_code == 200


class TestHealth:
    """Health endpoints"""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"database": "ok", "last_run_status": None}

    def test_ready(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_invalid_endpoint(self, client):
        assert client.get("/invalid").status_code == 404
