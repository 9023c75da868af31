import json
from pathlib import Path

import pytest

from quizloom.cli.main import main
from quizloom.core.hashing import fingerprint_text
from quizloom.core.time import days_ago_utc_iso
from quizloom.infrastructure.db.sqlite import get_connection

_TEXT = "1. What is 2 + 2?\nA) 3\nB) 4\nC) 5\nD) 6\n"


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.delenv("QUIZLOOM_HOME", raising=False)
    monkeypatch.setenv("QUIZLOOM_RATE_LIMIT_SECONDS", "0.01")
    root = tmp_path / "proj"
    root.mkdir()
    return root


def _run(project: Path, *args: str) -> int:
    return main(["--project-root", str(project), *args])


def test_commands_require_init(project: Path) -> None:
    assert _run(project, "docs", "list") == 1


def test_submit_list_export_import_and_prune(project: Path, tmp_path: Path) -> None:
    assert _run(project, "init") == 0

    source = tmp_path / "exam.txt"
    source.write_text(_TEXT, encoding="utf-8")
    assert _run(project, "submit", str(source), "--offline", "--wait") == 0
    fingerprint = fingerprint_text(_TEXT)

    assert _run(project, "docs", "list") == 0
    assert _run(project, "docs", "show", fingerprint[:10]) == 0
    assert _run(project, "questions", fingerprint[:10], "--json") == 0
    assert _run(project, "doctor") == 0

    bundle_path = tmp_path / "out" / "bundle.json"
    assert _run(project, "export", fingerprint[:10], str(bundle_path)) == 0
    bundle = json.loads(bundle_path.read_text(encoding="utf-8"))
    assert len(bundle["questions"]) == 3
    assert all(q["provenance"] == "placeholder" for q in bundle["questions"])

    db_path = project / ".quizloom" / "quizloom.db"
    with get_connection(db_path) as conn:
        conn.execute("UPDATE documents SET last_accessed_at = ?", (days_ago_utc_iso(60),))
        conn.commit()

    assert _run(project, "docs", "prune", "--older-than-days", "30") == 0
    with get_connection(db_path) as conn:
        assert conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0] == 1

    assert _run(project, "docs", "prune", "--older-than-days", "30", "--yes") == 0
    with get_connection(db_path) as conn:
        assert conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0] == 0

    assert _run(project, "import", str(bundle_path)) == 0
    with get_connection(db_path) as conn:
        assert conn.execute("SELECT COUNT(*) FROM questions").fetchone()[0] == 3


def test_unknown_fingerprint_prefix_fails(project: Path) -> None:
    assert _run(project, "init") == 0
    assert _run(project, "docs", "show", "abcdef") == 1
    assert _run(project, "docs", "show", "abc") == 1
