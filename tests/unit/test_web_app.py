import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from quizloom.core.config import AppPaths, PipelineSettings
from quizloom.web.app import create_app


class _FakeOracle:
    def __init__(self) -> None:
        self.calls = 0

    def generate(self, content, instructions):
        self.calls += 1
        return json.dumps(
            {
                "questions": [
                    {
                        "question": f"Web question {self.calls}?",
                        "options": ["a", "b", "c", "d"],
                        "correctAnswer": 2,
                        "explanation": "x",
                    }
                ]
            }
        )


def _paths(tmp_path: Path) -> AppPaths:
    project_root = tmp_path / "proj"
    project_root.mkdir(parents=True, exist_ok=True)
    return AppPaths(
        project_root=project_root,
        quizloom_dir=project_root / ".quizloom",
        db_path=project_root / ".quizloom" / "quizloom.db",
    )


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("QUIZLOOM_BACKGROUND_EXTRACTION_ENABLED", "0")
    settings = PipelineSettings(rate_limit_seconds=0.0)
    return TestClient(create_app(_paths(tmp_path), oracle=_FakeOracle(), settings=settings))


def test_web_app_end_to_end_smoke(client: TestClient) -> None:
    r = client.post("/api/init")
    assert r.status_code == 200

    text = "1. What is 2 + 2?\nA) 3\nB) 4\nC) 5\nD) 6\n"
    r = client.post("/api/documents/text", json={"name": "math.txt", "text": text})
    assert r.status_code == 200
    submitted = r.json()
    fingerprint = submitted["fingerprint"]
    assert submitted["state"] == "complete"
    assert submitted["questions"][0]["correctAnswer"] == 2

    r = client.post("/api/documents/text", json={"name": "math.txt", "text": text})
    assert r.json()["state"] == "cached"
    assert r.json()["from_cache"] is True

    r = client.get("/api/documents")
    assert r.json()["count"] == 1
    assert "raw_content" not in r.json()["documents"][0]

    r = client.get(f"/api/documents/{fingerprint}")
    assert r.status_code == 200
    assert r.json()["document"]["status"] == "complete"
    assert r.json()["persisted_units"] == [1]

    r = client.get(f"/api/documents/{fingerprint}/questions")
    assert r.json()["count"] == 1

    r = client.get(f"/api/documents/{fingerprint}/events")
    names = [e["event"] for e in r.json()["events"]]
    assert names == ["unit_completed", "first_batch_ready", "processing_complete", "cache_hit"]

    r = client.get(f"/api/transfer/{fingerprint}/metadata")
    assert r.json()["metadata"]["fingerprint"] == fingerprint
    r = client.get(f"/api/transfer/{fingerprint}/questions", params={"page": 0})
    assert len(r.json()["questions"]) == 1

    r = client.post("/api/sessions", json={"fingerprint": fingerprint})
    session_id = r.json()["session"]["id"]
    r = client.post(f"/api/sessions/{session_id}/answers", json={"ordinal": 1, "option_index": 2})
    assert r.status_code == 200
    r = client.get(f"/api/sessions/{session_id}/score")
    assert r.json()["score"]["percentage"] == 100
    r = client.post(f"/api/sessions/{session_id}/answers", json={"ordinal": 1, "option_index": 9})
    assert r.status_code == 400

    r = client.delete(f"/api/documents/{fingerprint}/answers")
    assert r.json()["sessions_cleared"] == 1

    r = client.get("/api/doctor")
    assert r.status_code == 200
    assert r.json()["ok"] is True

    r = client.delete(f"/api/documents/{fingerprint}")
    assert r.status_code == 200
    r = client.get(f"/api/documents/{fingerprint}")
    assert r.status_code == 404


def test_upload_and_transfer_import(client: TestClient) -> None:
    files = {"file": ("notes.txt", b"1. Capital of France?\nA) Paris\nB) Rome\n", "text/plain")}
    r = client.post("/api/documents/upload", files=files)
    assert r.status_code == 200
    fingerprint = r.json()["fingerprint"]

    r = client.post("/api/documents/upload", files={"file": ("bad.bin", b"\xff\xfe\xfa", "application/octet-stream")})
    assert r.status_code == 400

    metadata = client.get(f"/api/transfer/{fingerprint}/metadata").json()["metadata"]
    questions = client.get(f"/api/transfer/{fingerprint}/questions").json()["questions"]
    bundle = {"metadata": {**metadata, "fingerprint": "b" * 64}, "questions": questions}

    r = client.post("/api/transfer/import", json=bundle)
    assert r.status_code == 200
    assert r.json()["inserted"] == 1

    r = client.post("/api/transfer/import", json={"metadata": {}, "questions": []})
    assert r.status_code == 400


def test_error_mapping(client: TestClient) -> None:
    r = client.post("/api/documents/text", json={"name": "blank.txt", "text": "   "})
    assert r.status_code == 400

    missing = "c" * 64
    assert client.get(f"/api/documents/{missing}").status_code == 404
    assert client.get(f"/api/transfer/{missing}/metadata").status_code == 404
    assert client.post(f"/api/documents/{missing}/cancel").status_code == 404
    assert client.post("/api/sessions", json={"fingerprint": missing}).status_code == 404
    assert client.get("/api/sessions/nope/score").status_code == 400


def test_missing_api_key_is_service_unavailable(tmp_path: Path) -> None:
    client = TestClient(create_app(_paths(tmp_path), settings=PipelineSettings(gemini_api_key=None)))

    r = client.post("/api/documents/text", json={"name": "x.txt", "text": "1. Q?\nA) a\nB) b\n"})
    assert r.status_code == 503
