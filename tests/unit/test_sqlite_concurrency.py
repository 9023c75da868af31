from __future__ import annotations

import threading
import time
from pathlib import Path

from quizloom.core.hashing import fingerprint_text
from quizloom.core.time import now_utc_iso
from quizloom.domain.models.document import STATUS_PROCESSING, Document
from quizloom.domain.models.question import QuestionDraft
from quizloom.infrastructure.db.repos.document_repo import DocumentRepo
from quizloom.infrastructure.db.sqlite import SCHEMA_PATH, get_connection, initialize_schema


def test_connection_enables_wal_and_busy_timeout(tmp_path: Path) -> None:
    db_path = tmp_path / "quizloom.db"
    initialize_schema(db_path=db_path, schema_path=SCHEMA_PATH)

    with get_connection(db_path) as conn:
        journal_mode = conn.execute("PRAGMA journal_mode;").fetchone()[0]
        busy_timeout = conn.execute("PRAGMA busy_timeout;").fetchone()[0]
        foreign_keys = conn.execute("PRAGMA foreign_keys;").fetchone()[0]

    assert str(journal_mode).lower() == "wal"
    assert int(busy_timeout) >= 30_000
    assert int(foreign_keys) == 1


def test_initialize_schema_is_repeatable(tmp_path: Path) -> None:
    db_path = tmp_path / "quizloom.db"
    initialize_schema(db_path)
    initialize_schema(db_path)

    with get_connection(db_path) as conn:
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        }
    assert {"documents", "questions", "sessions"} <= tables


def test_write_waits_for_lock_instead_of_failing_immediately(tmp_path: Path) -> None:
    db_path = tmp_path / "quizloom.db"
    initialize_schema(db_path=db_path, schema_path=SCHEMA_PATH)
    now = now_utc_iso()

    writer_1 = get_connection(db_path)
    writer_1.execute("BEGIN IMMEDIATE;")
    writer_1.execute(
        "INSERT INTO documents (fingerprint, name, created_at, last_accessed_at) VALUES (?, ?, ?, ?)",
        ("a" * 64, "first", now, now),
    )

    out: dict[str, object] = {}

    def _writer_2() -> None:
        started = time.perf_counter()
        try:
            with get_connection(db_path) as conn_2:
                conn_2.execute(
                    "INSERT INTO documents (fingerprint, name, created_at, last_accessed_at) VALUES (?, ?, ?, ?)",
                    ("b" * 64, "second", now, now),
                )
                conn_2.commit()
            out["ok"] = True
        except Exception as exc:  # pragma: no cover
            out["ok"] = False
            out["error"] = str(exc)
        finally:
            out["elapsed"] = time.perf_counter() - started

    t = threading.Thread(target=_writer_2)
    t.start()
    time.sleep(0.25)
    writer_1.commit()
    writer_1.close()
    t.join(timeout=5)

    assert out.get("ok") is True, str(out.get("error"))
    assert float(out.get("elapsed", 0.0)) >= 0.2

    with get_connection(db_path) as conn:
        count = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
    assert int(count) == 2


def test_parallel_unit_appends_get_contiguous_ordinals(tmp_path: Path) -> None:
    db_path = tmp_path / "quizloom.db"
    initialize_schema(db_path)
    fingerprint = fingerprint_text("parallel appends")
    now = now_utc_iso()
    repo = DocumentRepo(db_path)
    repo.upsert_document(
        Document(
            fingerprint=fingerprint,
            name="parallel.txt",
            size_bytes=16,
            content_kind="text",
            raw_content="parallel appends",
            total_questions=0,
            status=STATUS_PROCESSING,
            planned_units=8,
            completed_units=0,
            created_at=now,
            last_accessed_at=now,
        )
    )

    def _append(unit: int) -> None:
        drafts = [
            QuestionDraft(prompt=f"Unit {unit} question {i}?", options=["a", "b", "c", "d"], correct_index=0, explanation="x")
            for i in range(3)
        ]
        DocumentRepo(db_path).append_questions(fingerprint, unit, drafts)

    threads = [threading.Thread(target=_append, args=(unit,)) for unit in range(1, 9)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    questions = repo.list_questions(fingerprint)
    assert [q.ordinal for q in questions] == list(range(1, 25))
    for unit in range(1, 9):
        ordinals = [q.ordinal for q in questions if q.unit == unit]
        assert ordinals == list(range(ordinals[0], ordinals[0] + 3))
    assert repo.lookup(fingerprint).total_questions == 24
