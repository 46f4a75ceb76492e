import asyncio
import json
import os
import time
from datetime import datetime, timedelta, timezone

import httpx

import analyzer
import main
from db.crud import count_analyses, count_reports, create_report
from db.models import HealthReport
from worker.celery_app import run_analysis
from conftest import VALID_ANALYSIS, fake_completion_response

PDF = ("blood-test.pdf", b"%PDF-1.4 fake lab report", "application/pdf")


def _upload(client, file=PDF):
    return client.post("/api/reports/upload", files={"file": file})


# ── Health ────────────────────────────────────────────────────────────────────

def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


# ── Upload ────────────────────────────────────────────────────────────────────

def test_upload_creates_report_and_dispatches(client, dispatched, db):
    resp = _upload(client)

    assert resp.status_code == 201
    body = resp.json()
    assert body["message"] == "Report uploaded successfully"
    report_id = body["reportId"]

    assert count_reports(db) == 1
    report = db.get(HealthReport, report_id)
    assert report.file_name == "blood-test.pdf"
    assert report.file_type == "application/pdf"
    assert os.path.exists(report.file_path)
    assert report.file_path.endswith(".pdf")

    assert dispatched == [
        {"report_id": report_id, "file_path": report.file_path, "mime_type": "application/pdf"}
    ]


def test_upload_accepts_images(client):
    assert _upload(client, ("scan.png", b"\x89PNG", "image/png")).status_code == 201
    assert _upload(client, ("scan.jpg", b"\xff\xd8\xff", "image/jpeg")).status_code == 201


def test_upload_rejects_unsupported_type(client, dispatched, db):
    resp = _upload(client, ("notes.txt", b"hello", "text/plain"))
    assert resp.status_code == 400
    assert "Invalid file type" in resp.json()["detail"]
    assert count_reports(db) == 0
    assert dispatched == []


def test_upload_rejects_oversize_file(client, dispatched, db):
    too_big = b"0" * (10 * 1024 * 1024 + 1)
    resp = _upload(client, ("huge.pdf", too_big, "application/pdf"))
    assert resp.status_code == 400
    assert "too large" in resp.json()["detail"]
    assert count_reports(db) == 0
    assert dispatched == []


def test_upload_accepts_exactly_ten_mib(client, db):
    resp = _upload(client, ("edge.pdf", b"0" * (10 * 1024 * 1024), "application/pdf"))
    assert resp.status_code == 201
    assert count_reports(db) == 1


def test_upload_without_file(client, db):
    resp = client.post("/api/reports/upload", data={"note": "nothing attached"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No file uploaded"
    assert count_reports(db) == 0


def test_upload_store_failure_returns_500_and_removes_file(client, monkeypatch, db):
    saved = []
    real_save = main.save_upload

    def tracking_save(content, name):
        path = real_save(content, name)
        saved.append(path)
        return path

    def broken_create_report(*args, **kwargs):
        raise RuntimeError("database is down")

    monkeypatch.setattr(main, "save_upload", tracking_save)
    monkeypatch.setattr(main, "create_report", broken_create_report)

    resp = _upload(client)
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to upload report"
    assert saved and not os.path.exists(saved[0])
    assert count_reports(db) == 0


def test_upload_dispatch_failure_still_accepts(client, monkeypatch, db):
    def broken_dispatch(*args, **kwargs):
        raise ConnectionError("redis unavailable")

    monkeypatch.setattr(main, "dispatch_analysis", broken_dispatch)
    resp = _upload(client)
    assert resp.status_code == 201
    assert count_reports(db) == 1


# ── Queries ───────────────────────────────────────────────────────────────────

def test_fresh_report_has_no_analysis_until_task_runs(client, dispatched, monkeypatch, api_key):
    report_id = _upload(client).json()["reportId"]

    resp = client.get(f"/api/reports/{report_id}")
    assert resp.status_code == 200
    assert resp.json()["analysis"] is None

    monkeypatch.setattr(
        analyzer.litellm, "completion",
        lambda **kwargs: fake_completion_response(json.dumps(VALID_ANALYSIS)),
    )
    run_analysis(**dispatched[0])

    body = client.get(f"/api/reports/{report_id}").json()
    analysis = body["analysis"]
    assert analysis["reportId"] == report_id
    assert analysis["lifeScore"] == 78
    assert analysis["metrics"][0]["normalRange"] == "< 130"
    assert analysis["recommendations"][0]["category"] == "diet"
    assert analysis["analysisDate"]


def test_report_json_shape(client):
    report_id = _upload(client).json()["reportId"]
    body = client.get(f"/api/reports/{report_id}").json()
    assert set(body) == {"id", "fileName", "fileType", "filePath", "uploadedAt", "analysis"}
    assert body["id"] == report_id
    assert body["fileName"] == "blood-test.pdf"


def test_unknown_report_is_404(client):
    resp = client.get("/api/reports/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Report not found"


def test_list_is_newest_first(client, db):
    now = datetime.now(timezone.utc)
    middle = create_report(db, "b.pdf", "application/pdf", "/tmp/b.pdf", uploaded_at=now - timedelta(days=1))
    newest = create_report(db, "c.pdf", "application/pdf", "/tmp/c.pdf", uploaded_at=now)
    oldest = create_report(db, "a.pdf", "application/pdf", "/tmp/a.pdf", uploaded_at=now - timedelta(days=2))

    resp = client.get("/api/reports")
    assert resp.status_code == 200
    assert [r["id"] for r in resp.json()] == [newest.id, middle.id, oldest.id]
    assert all(r["analysis"] is None for r in resp.json())


def test_list_empty(client):
    resp = client.get("/api/reports")
    assert resp.status_code == 200
    assert resp.json() == []


def test_list_joins_analysis(client, dispatched):
    analysed = _upload(client).json()["reportId"]
    pending = _upload(client).json()["reportId"]
    run_analysis(**dispatched[0])  # no API key configured, stores the fallback

    by_id = {r["id"]: r for r in client.get("/api/reports").json()}
    assert by_id[analysed]["analysis"]["lifeScore"] == 50
    assert by_id[pending]["analysis"] is None


def test_dashboard(client, dispatched, db):
    empty = client.get("/api/dashboard").json()
    assert empty == {"totalReports": 0, "analyzedReports": 0, "latestReport": None}

    _upload(client)
    run_analysis(**dispatched[0])
    latest_id = _upload(client).json()["reportId"]

    body = client.get("/api/dashboard").json()
    assert body["totalReports"] == 2
    assert body["analyzedReports"] == 1
    assert body["latestReport"]["id"] == latest_id
    assert count_analyses(db) == 1


def test_query_failure_returns_500(client, monkeypatch):
    def broken(db):
        raise RuntimeError("boom")

    monkeypatch.setattr(main, "get_all_reports", broken)
    resp = client.get("/api/reports")
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to fetch reports"


def test_readiness_reports_degraded_redis(client, monkeypatch):
    def unreachable(url, **kwargs):
        raise ConnectionError("redis down")

    monkeypatch.setattr(main.redis.Redis, "from_url", unreachable)
    body = client.get("/api/health/ready").json()
    assert body["database"] == "ok"
    assert body["status"] == "degraded"
    assert "redis down" in body["redis"]


def test_liveness_answers_while_database_check_blocks(monkeypatch):
    def slow_connect(*args, **kwargs):
        time.sleep(1.0)
        raise ConnectionError("database unreachable")

    def unreachable(url, **kwargs):
        raise ConnectionError("redis down")

    monkeypatch.setattr(main.engine, "connect", slow_connect)
    monkeypatch.setattr(main.redis.Redis, "from_url", unreachable)

    async def scenario():
        transport = httpx.ASGITransport(app=main.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
            ready = asyncio.create_task(ac.get("/api/health/ready"))
            await asyncio.sleep(0.2)
            started = time.monotonic()
            health = await ac.get("/api/health")
            health_elapsed = time.monotonic() - started
            return health, health_elapsed, await ready

    health, health_elapsed, ready = asyncio.run(scenario())

    assert health.status_code == 200
    assert health_elapsed < 0.5
    assert ready.json()["status"] == "degraded"
    assert "database unreachable" in ready.json()["database"]
