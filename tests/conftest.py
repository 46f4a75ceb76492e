import os
import tempfile
from types import SimpleNamespace

# Point the app at a throwaway SQLite file and upload dir before anything imports db.database
_TMP_DIR = tempfile.mkdtemp(prefix="health-report-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ.pop("GOOGLE_API_KEY", None)
os.environ.pop("GEMINI_API_KEY", None)

import pytest
from fastapi.testclient import TestClient

import main
from db.database import Base, SessionLocal, create_tables, engine


VALID_ANALYSIS = {
    "lifeScore": 78,
    "summary": "Mostly normal results with slightly elevated LDL cholesterol.",
    "metrics": [
        {
            "name": "LDL Cholesterol",
            "value": "142",
            "unit": "mg/dL",
            "status": "attention",
            "normalRange": "< 130",
            "category": "Lipid Profile",
        },
        {
            "name": "Hemoglobin",
            "value": "14.2",
            "unit": "g/dL",
            "status": "good",
            "normalRange": "13.5 - 17.5",
            "category": "Blood Count",
        },
    ],
    "insights": [
        {
            "category": "Lipid Profile",
            "title": "Elevated LDL",
            "description": "LDL is above the recommended range.",
            "severity": "medium",
        }
    ],
    "recommendations": [
        {
            "category": "diet",
            "title": "Reduce saturated fat",
            "actions": ["Swap butter for olive oil", "Eat oily fish twice a week"],
            "priority": "high",
        }
    ],
}


def fake_completion_response(content):
    """Shape of a litellm ModelResponse as far as the analyzer reads it."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture(autouse=True)
def database():
    create_tables()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def dispatched(monkeypatch):
    """Capture background dispatches instead of sending them to Celery."""
    calls = []

    def fake_dispatch(report_id, file_path, mime_type):
        calls.append({"report_id": report_id, "file_path": file_path, "mime_type": mime_type})

    monkeypatch.setattr(main, "dispatch_analysis", fake_dispatch)
    return calls


@pytest.fixture
def client(dispatched):
    return TestClient(main.app)


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "test-key")
    return "test-key"


@pytest.fixture
def upload_file(tmp_path):
    path = tmp_path / "blood-test.pdf"
    path.write_bytes(b"%PDF-1.4 fake lab report")
    return str(path)
