"""HTTP tests for the clips, edits and health routers."""

from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio

from clipworks.api.deps import build_pipeline
from clipworks.main import create_app
from clipworks.services.extraction import ExtractionRequest, StrategyName
from clipworks.services.resource_guard import MB

OWN_URL = "https://files.clipworks.test/clipworks-uploads/uploads/42/interview.mp4"


def head_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": "video/mp4", "content-length": str(50 * MB)})


class SegmentStrategy:
    """Writes a fake segment instead of running ffmpeg."""

    def __init__(self, name: StrategyName, guard) -> None:
        self.name = name
        self.guard = guard

    async def extract(self, request: ExtractionRequest) -> str:
        path = self.guard.new_temp_path(f"{self.name.value}-{request.fingerprint[:8]}.mp4")
        Path(path).write_bytes(b"segment")
        return path


@pytest_asyncio.fixture
async def pipeline(session_maker, settings, storage, guard):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(head_ok))
    pipeline = build_pipeline(
        session_maker,
        settings,
        storage=storage,
        guard=guard,
        engine=MagicMock(),
        http_client=http_client,
    )
    pipeline.edits.selector.strategies = {name: SegmentStrategy(name, guard) for name in StrategyName}
    yield pipeline
    await pipeline.runner.drain()
    await http_client.aclose()


@pytest_asyncio.fixture
async def client(pipeline):
    app = create_app(pipeline=pipeline)
    # ASGITransport does not run the lifespan
    app.state.pipeline = pipeline
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestEditsApi:
    """Tests for /api/edits."""

    @pytest.mark.asyncio
    async def test_edit_is_accepted_and_completes(self, client, pipeline):
        response = await client.post(
            "/api/edits",
            json={"url": OWN_URL, "startTime": 5, "endTime": 15, "feedId": "42"},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "processing"
        assert body["pollUrl"] == f"/api/edits/{body['fingerprint']}"

        await pipeline.runner.drain()
        status = (await client.get(body["pollUrl"])).json()
        assert status["status"] == "completed"
        assert status["assetUrl"].endswith(f"uploads/42/interview-children/{body['fingerprint']}.mp4")

    @pytest.mark.asyncio
    async def test_too_long_edit_returns_error_envelope(self, client):
        response = await client.post(
            "/api/edits",
            json={"url": OWN_URL, "startTime": 5, "endTime": 610},
            headers={"X-Request-ID": "req-1"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["request_id"] == "req-1"
        assert body["error"]["code"] == "DURATION_TOO_LONG"
        assert "meta" in body

    @pytest.mark.asyncio
    async def test_untrusted_host_is_rejected(self, client):
        response = await client.post(
            "/api/edits",
            json={"url": "https://evil.example.com/a.mp4", "startTime": 5, "endTime": 15},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNTRUSTED_SOURCE"

    @pytest.mark.asyncio
    async def test_missing_field_is_validation_error(self, client):
        response = await client.post("/api/edits", json={"url": OWN_URL, "startTime": 5})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_fingerprint_is_not_found(self, client):
        response = await client.get(f"/api/edits/{'0' * 64}")

        assert response.status_code == 200
        assert response.json() == {"status": "not_found", "fingerprint": "0" * 64}

    @pytest.mark.asyncio
    async def test_children_listing(self, client, pipeline):
        created = await client.post(
            "/api/edits",
            json={"url": OWN_URL, "startTime": 5, "endTime": 15, "feedId": "42"},
        )
        await pipeline.runner.drain()

        response = await client.get("/api/edits/children/interview.mp4", params={"feedId": "42"})

        assert response.status_code == 200
        body = response.json()
        assert body["parentFileName"] == "interview"
        assert body["childCount"] == 1
        assert body["children"][0]["fingerprint"] == created.json()["fingerprint"]
        assert body["children"][0]["editRange"] == "5s-15s"

    @pytest.mark.asyncio
    async def test_children_of_other_feed_are_hidden(self, client, pipeline):
        await client.post(
            "/api/edits",
            json={"url": OWN_URL, "startTime": 5, "endTime": 15, "feedId": "42"},
        )
        await pipeline.runner.drain()

        response = await client.get("/api/edits/children/interview", params={"feedId": "7"})

        assert response.json()["childCount"] == 0


class TestClipsApi:
    @pytest.mark.asyncio
    async def test_inverted_window_is_rejected(self, client):
        response = await client.post(
            "/api/clips",
            json={
                "feedId": "42",
                "episodeGuid": "abc",
                "audioUrl": "https://traffic.libsyn.com/show/episode-42.mp3",
                "startTime": 40,
                "endTime": 10,
            },
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TIME_RANGE"

    @pytest.mark.asyncio
    async def test_unknown_clip_is_not_found(self, client):
        response = await client.get(f"/api/clips/{'f' * 64}")

        assert response.json()["status"] == "not_found"


class TestHealthApi:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_resource_stats(self, client):
        response = await client.get("/api/health/resources")

        body = response.json()
        assert body["memory_usage_mb"] == 200
        assert body["memory_ceiling_mb"] == 1024
        assert body["active_jobs"] == 0
        assert body["cache"]["ttl_s"] == 60.0


class TestFilesApi:
    """Local storage assets are served under /files."""

    @pytest.mark.asyncio
    async def test_completed_edit_asset_is_downloadable(self, client, pipeline, settings):
        created = await client.post(
            "/api/edits",
            json={"url": OWN_URL, "startTime": 5, "endTime": 15, "feedId": "42"},
        )
        await pipeline.runner.drain()
        status = (await client.get(created.json()["pollUrl"])).json()

        path = status["assetUrl"].removeprefix(settings.local_storage_base_url)
        response = await client.get(f"/files{path}")

        assert response.status_code == 200
        assert response.headers["content-type"] == "video/mp4"
        assert response.content == b"segment"

    @pytest.mark.asyncio
    async def test_unknown_file_is_404(self, client):
        response = await client.get("/files/clipworks-uploads/uploads/42/missing.mp4")

        assert response.status_code == 404
