import io
import time
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from automator.api.deps import get_remover
from automator.api.main import create_app
from automator.models import JobStatus
from automator.orchestrator import BatchOrchestrator
from automator.pipeline.acquisition import ImageAcquisition
from automator.pipeline.watermark_remover import AlphaMapCache, WatermarkRemover
from automator.service import AutomatorService

from .conftest import FakeAdapter, FixedRng, RecordingSleep


def png_bytes(width: int, height: int) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (200, 180, 160)).save(buf, format="PNG")
    return buf.getvalue()


def wait_for_status(client, *statuses, cursor=None, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get("/api/jobs/current").json()
        if body["status"] in statuses and (cursor is None or body["cursor"] == cursor):
            return body
        time.sleep(0.01)
    raise AssertionError(f"job never reached {statuses}")


@pytest.fixture
def remover(assets_dir):
    return WatermarkRemover(AlphaMapCache(assets_dir))


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def service(adapter, fast_settings, remover):
    orchestrator = BatchOrchestrator(
        adapter, settings=fast_settings, rng=FixedRng(5.0), sleep=RecordingSleep()
    )
    return AutomatorService(orchestrator, ImageAcquisition(remover, enabled=True))


@pytest.fixture
def client(service, remover):
    @asynccontextmanager
    async def factory():
        yield service
        await service.aclose()

    app = create_app(factory)
    app.dependency_overrides[get_remover] = lambda: remover
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def offline_client():
    @asynccontextmanager
    async def factory():
        yield None

    with TestClient(create_app(factory)) as test_client:
        yield test_client


# ============================================================================
# Jobs
# ============================================================================

def test_current_job_when_idle(client):
    response = client.get("/api/jobs/current")

    assert response.status_code == 200
    assert response.json()["status"] == "idle"
    assert response.json()["id"] is None


def test_start_job_runs_to_completion(client, adapter):
    response = client.post(
        "/api/jobs", json={"items": ["a red fox", "a blue whale"], "min_delay": 5, "max_delay": 6}
    )

    assert response.status_code == 202
    assert response.json()["total"] == 2

    body = wait_for_status(client, "completed")
    assert body["cursor"] == 2
    assert body["progress"] == 100
    assert body["succeeded"] == 2
    assert body["min_delay"] == 5
    assert [o["item"] for o in body["outcomes"]] == ["a red fox", "a blue whale"]
    assert adapter.filled == ["a red fox", "a blue whale"]


def test_start_job_from_text(client, adapter):
    response = client.post("/api/jobs", json={"text": "first\n\n  second  \n", "min_delay": 5, "max_delay": 6})

    assert response.status_code == 202
    wait_for_status(client, "completed")
    assert adapter.filled == ["first", "second"]


def test_start_job_can_disable_watermark_removal(client, service):
    client.post("/api/jobs", json={"items": ["a"], "min_delay": 5, "max_delay": 6,
                                   "watermark_removal_enabled": False})

    assert service.acquisition.enabled is False


def test_start_job_validation_errors(client):
    response = client.post("/api/jobs", json={"items": ["  "], "min_delay": 8, "max_delay": 6})

    assert response.status_code == 422
    assert response.json()["detail"]["errors"] == [
        "Please enter at least one prompt",
        "Min delay must be less than max delay",
    ]


def test_rejected_start_keeps_watermark_toggle(client, adapter, service):
    response = client.post("/api/jobs", json={"items": ["  "], "min_delay": 5, "max_delay": 6,
                                              "watermark_removal_enabled": False})
    assert response.status_code == 422
    assert service.acquisition.enabled is True

    adapter.on_complete = lambda item: service.orchestrator.pause()
    client.post("/api/jobs", json={"items": ["a", "b"], "min_delay": 5, "max_delay": 6})
    wait_for_status(client, "paused", cursor=1)

    response = client.post("/api/jobs", json={"items": ["c"], "min_delay": 5, "max_delay": 6,
                                              "watermark_removal_enabled": False})
    assert response.status_code == 409
    assert service.acquisition.enabled is True

    client.post("/api/jobs/stop")
    wait_for_status(client, "idle")


def test_start_job_requires_items_or_text(client):
    response = client.post("/api/jobs", json={"min_delay": 5, "max_delay": 6})
    assert response.status_code == 422


def test_pause_conflict_and_resume(client, adapter, service):
    adapter.on_complete = lambda item: service.orchestrator.pause() if item == "a" else None

    client.post("/api/jobs", json={"items": ["a", "b"], "min_delay": 5, "max_delay": 6})
    wait_for_status(client, "paused", cursor=1)

    assert client.post("/api/jobs", json={"items": ["c"], "min_delay": 5, "max_delay": 6}).status_code == 409
    assert client.post("/api/jobs/pause").status_code == 409

    response = client.post("/api/jobs/resume")
    assert response.status_code == 200
    assert response.json()["status"] == "running"

    body = wait_for_status(client, "completed")
    assert body["cursor"] == 2
    assert adapter.filled == ["a", "b"]


def test_stop_job(client, adapter, service):
    adapter.on_complete = lambda item: service.orchestrator.pause()

    client.post("/api/jobs", json={"items": ["a", "b"], "min_delay": 5, "max_delay": 6})
    wait_for_status(client, "paused", cursor=1)

    response = client.post("/api/jobs/stop")
    assert response.status_code == 200
    assert response.json()["status"] in ("stopping", "idle")

    body = wait_for_status(client, "idle")
    assert body["cursor"] == 1
    assert service.orchestrator.status == JobStatus.IDLE


def test_control_without_job_conflicts(client):
    assert client.post("/api/jobs/pause").status_code == 409
    assert client.post("/api/jobs/resume").status_code == 409
    assert client.post("/api/jobs/stop").status_code == 409


def test_logs_listing_and_clear(client):
    client.post("/api/jobs", json={"items": ["a"], "min_delay": 5, "max_delay": 6})
    wait_for_status(client, "completed")

    response = client.get("/api/jobs/logs", params={"limit": 2})
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert body["entries"][-1]["message"] == "All 1 prompts completed (1 succeeded, 0 failed)"
    assert body["entries"][-1]["level"] == "success"

    assert client.delete("/api/jobs/logs").status_code == 204
    assert client.get("/api/jobs/logs").json()["total"] == 0


def test_jobs_unavailable_without_browser(offline_client):
    response = offline_client.get("/api/jobs/current")
    assert response.status_code == 503


# ============================================================================
# Watermark
# ============================================================================

def test_remove_watermark_upload(client):
    response = client.post(
        "/api/watermark/remove",
        files={"file": ("gemini.png", png_bytes(300, 300), "image/png")},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.headers["x-watermark-outcome"] == "processed"
    assert response.headers["x-watermark-variant"] == "small"
    with Image.open(io.BytesIO(response.content)) as image:
        assert image.size == (300, 300)


def test_remove_watermark_small_upload_returned_unchanged(client):
    original = png_bytes(40, 40)

    response = client.post(
        "/api/watermark/remove",
        files={"file": ("tiny.png", original, "image/png")},
    )

    assert response.status_code == 200
    assert response.headers["x-watermark-outcome"] == "skipped"
    assert response.headers["x-watermark-reason"] == "image smaller than watermark footprint"
    assert response.content == original


def test_remove_watermark_rejects_garbage(client):
    response = client.post(
        "/api/watermark/remove",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Could not decode image"


# ============================================================================
# Health
# ============================================================================

def test_health_all_services_healthy(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["services"] == {"browser": "healthy", "watermark": "healthy"}


def test_health_reports_broken_capture(client, assets_dir):
    (assets_dir / "bg_48.png").write_bytes(b"not a png")

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["services"]["watermark"] == "unavailable"


def test_health_degraded_without_browser(offline_client):
    body = offline_client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["services"]["browser"] == "unavailable"


def test_liveness_and_root(offline_client):
    assert offline_client.get("/health/live").json() == {"status": "alive"}
    assert offline_client.get("/").json()["health"] == "/health"
