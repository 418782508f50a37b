import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from conftest import SITE, FakeDownloader, FakeFetcher
from workers.job_runner import JobManager

JOB = {
    "base_url": SITE + "/slow",
    "selectors": [
        {"kind": "css", "query": "a.next", "purpose": "links"},
        {"kind": "xpath", "query": "//img", "purpose": "assets"},
    ],
    "rules": {"max_depth": 2, "request_delay": 0},
}


@pytest.fixture
def client(settings):
    manager = JobManager(
        settings,
        fetcher_factory=lambda rules: FakeFetcher({}, blocked=[SITE + "/slow"]),
        downloader_factory=lambda: FakeDownloader(settings.storage_path),
    )
    with TestClient(create_app(manager)) as c:
        yield c


def test_create_and_read_job(client):
    resp = client.post("/api/jobs", json=JOB)
    assert resp.status_code == 200
    job_id = resp.json()["job_id"]
    assert resp.json()["status"] == "idle"

    listed = client.get("/api/jobs").json()
    assert [j["id"] for j in listed] == [job_id]

    job = client.get(f"/api/jobs/{job_id}").json()
    assert job["rules"]["max_depth"] == 2
    assert job["selectors"][1] == {"kind": "xpath", "query": "//img", "purpose": "assets"}
    assert client.get(f"/api/jobs/{job_id}/assets").json() == []


def test_invalid_job_is_rejected(client):
    resp = client.post("/api/jobs", json={**JOB, "schedule": "sometimes"})
    assert resp.status_code == 400

    resp = client.post("/api/jobs", json={**JOB, "selectors": [{"kind": "regex", "query": "x", "purpose": "links"}]})
    assert resp.status_code == 422


def test_start_stop_lifecycle(client):
    job_id = client.post("/api/jobs", json=JOB).json()["job_id"]

    assert client.post(f"/api/jobs/{job_id}/stop").status_code == 400

    resp = client.post(f"/api/jobs/{job_id}/start")
    assert resp.status_code == 200
    assert resp.json()["status"] == "running"
    assert client.post(f"/api/jobs/{job_id}/start").status_code == 400

    resp = client.post(f"/api/jobs/{job_id}/stop")
    assert resp.status_code == 200
    assert resp.json()["status"] == "stopped"

    assert client.delete(f"/api/jobs/{job_id}").status_code == 200
    assert client.get(f"/api/jobs/{job_id}").status_code == 404


def test_unknown_ids_are_404(client):
    assert client.get("/api/jobs/nope").status_code == 404
    assert client.post("/api/jobs/nope/start").status_code == 404
    assert client.post("/api/jobs/nope/stop").status_code == 404
    assert client.delete("/api/jobs/nope").status_code == 404
    assert client.get("/api/jobs/nope/assets").status_code == 404
    assert client.get("/api/assets/nope").status_code == 404
