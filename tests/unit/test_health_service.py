from pathlib import Path

from quizloom.application.services.health_service import HealthService
from quizloom.core.hashing import fingerprint_text
from quizloom.core.time import now_utc_iso
from quizloom.infrastructure.db.sqlite import SCHEMA_PATH, get_connection, initialize_schema


def _bootstrap(tmp_path: Path) -> Path:
    db_path = tmp_path / "quizloom.db"
    initialize_schema(db_path, SCHEMA_PATH)
    return db_path


def test_doctor_passes_on_fresh_database(tmp_path: Path) -> None:
    report = HealthService(_bootstrap(tmp_path)).run_doctor()

    assert report.ok is True
    assert report.checks_run == 4
    assert report.issues == []
    assert report.db_runtime["journal_mode"] == "wal"


def test_doctor_reports_inconsistent_documents_and_questions(tmp_path: Path) -> None:
    db_path = _bootstrap(tmp_path)
    fingerprint = fingerprint_text("broken")
    now = now_utc_iso()
    with get_connection(db_path) as conn:
        conn.execute(
            """
            INSERT INTO documents (
                fingerprint, name, status, planned_units, completed_units, total_questions,
                created_at, last_accessed_at
            ) VALUES (?, 'broken.txt', 'complete', 3, 1, 7, ?, ?)
            """,
            (fingerprint, now, now),
        )
        conn.execute(
            """
            INSERT INTO questions (
                fingerprint, ordinal, unit, prompt, options_json, correct_index, explanation,
                provenance, created_at
            ) VALUES (?, 1, 1, 'Q?', '["a", "b", "c"]', 0, 'e', 'ai', ?)
            """,
            (fingerprint, now),
        )
        conn.commit()

    report = HealthService(db_path).run_doctor()

    checks = {(issue.check, issue.level) for issue in report.issues}
    assert ("unit_progress", "error") in checks
    assert ("question_shape", "error") in checks
    assert ("question_totals", "warning") in checks
    assert report.ok is False
