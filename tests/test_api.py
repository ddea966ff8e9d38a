# tests/test_api.py
import pytest
import requests
from conftest import FakeAI, jobs_json

from modules.job_discovery.lib.extractor import Extractor
from service import api


@pytest.fixture
def pipeline(make_pipeline):
    return make_pipeline(robots=None)


@pytest.fixture
def client(pipeline):
    return api.create_app(pipeline).test_client()


def test_cache_routes_empty_before_first_batch(client):
    assert client.get("/api/cache/jobs").get_json() == {"source": None, "count": 0, "jobs": []}
    assert client.get("/api/cache/stats").get_json() == {}
    assert client.get("/api/cache/logs").get_json() == []


def test_manual_scrape_then_read_back(client, frozen_utc):
    resp = client.post("/api/jobs/scrape-official")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "success"
    assert body["trigger_type"] == "manual"
    assert [s["source"] for s in body["sources"]] == ["A", "B", "C", "D", "E"]
    assert body["next_index"] == 5

    jobs = client.get("/api/cache/jobs").get_json()
    assert jobs["count"] == 5
    assert jobs["jobs"][0] == {
        "title": "Clerk",
        "company": "Gov Dept",
        "location": "A",
        "type": "Full-time",
        "category": "Central Government",
        "deadline": "2025-03-02",
        "description": "Jobs from A",
        "salary": "Varies",
    }

    only_b = client.get("/api/cache/jobs?source=B").get_json()
    assert only_b["source"] == "B" and only_b["count"] == 1
    assert client.get("/api/cache/jobs?source=Z").get_json()["count"] == 0

    stats = client.get("/api/cache/stats").get_json()
    assert list(stats) == ["A", "B", "C", "D", "E"]
    assert stats["A"] == {"count": 1, "last_updated": "2025-01-01T00:00:00Z"}

    (log,) = client.get("/api/cache/logs").get_json()
    assert log == {
        "timestamp": "2025-01-01T00:00:00Z",
        "sources": ["A", "B", "C", "D", "E"],
        "jobs_added": 5,
        "status": "success",
    }


def test_manual_scrape_rejected_while_batch_in_flight(client, pipeline):
    pipeline._run_lock.acquire()
    try:
        resp = client.post("/api/jobs/scrape-official")
    finally:
        pipeline._run_lock.release()
    assert resp.status_code == 409
    assert "already running" in resp.get_json()["error"]
    assert pipeline.cache.get_logs() == []


def test_manual_scrape_unexpected_error_is_500(client, pipeline, monkeypatch):
    def _boom(trigger_type):
        raise RuntimeError("cache corrupted")

    monkeypatch.setattr(pipeline, "_run_batch_locked", _boom)
    resp = client.post("/api/jobs/scrape-official")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "RuntimeError: cache corrupted"}
    assert not pipeline.in_flight


def test_manual_scrape_after_stop_is_503_and_not_logged(client, pipeline):
    pipeline.request_stop()
    resp = client.post("/api/jobs/scrape-official")
    assert resp.status_code == 503
    assert "shutting down" in resp.get_json()["error"]
    assert pipeline.cache.get_logs() == []


def test_manual_scrape_without_ai_is_503(make_pipeline):
    p = make_pipeline(extractor=Extractor(None, unavailable_reason="AI client not initialized"))
    client = api.create_app(p).test_client()

    resp = client.post("/api/jobs/scrape-official")
    assert resp.status_code == 503
    assert resp.get_json()["error"] == "AI client not initialized"
    assert client.get("/api/cache/logs").get_json()[0]["status"] == "failed"


def test_health_reports_degraded_sources(make_pipeline):
    p = make_pipeline(ai=FakeAI("[]"), robots=None, batch_size=7)
    client = api.create_app(p, degraded_after=2).test_client()

    client.post("/api/jobs/scrape-official")
    assert client.get("/api/cache/health").get_json()["healthy"] is True

    client.post("/api/jobs/scrape-official")
    health = client.get("/api/cache/health").get_json()
    assert health["threshold"] == 2
    assert health["healthy"] is False
    assert health["degraded"]["A"] == 2

    assert client.get("/api/cache/health?threshold=5").get_json()["healthy"] is True
    assert client.get("/api/cache/health?threshold=abc").status_code == 400
    assert client.get("/api/cache/health?threshold=0").status_code == 400


def test_scheduler_status_without_controller(client, pipeline):
    status = client.get("/api/scheduler/status").get_json()
    assert status == {
        "running": False,
        "in_flight": False,
        "current_index": 0,
        "batch_size": 5,
        "registry_size": 7,
        "next_sources": ["A", "B", "C", "D", "E"],
        "next_run_time": None,
        "ai_available": True,
    }

    client.post("/api/jobs/scrape-official")
    status = client.get("/api/scheduler/status").get_json()
    assert status["current_index"] == 5
    assert status["next_sources"] == ["F", "G", "A", "B", "C"]


def test_server_thread_serves_and_stops(make_pipeline):
    p = make_pipeline(ai=FakeAI(jobs_json("Clerk")), robots=None)
    server = api.start(api.create_app(p), host="127.0.0.1", port=0)
    try:
        resp = requests.get(f"http://127.0.0.1:{server.port}/api/cache/logs", timeout=5)
        assert resp.status_code == 200
        assert resp.json() == []
    finally:
        server.stop()
        server.join(timeout=5)
