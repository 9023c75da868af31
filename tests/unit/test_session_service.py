from pathlib import Path

import pytest

from quizloom.application.services.session_service import SessionService
from quizloom.core.errors import DocumentNotFoundError, SessionError
from quizloom.core.hashing import fingerprint_text
from quizloom.core.time import now_utc_iso
from quizloom.domain.models.document import STATUS_PROCESSING, Document
from quizloom.domain.models.question import QuestionDraft
from quizloom.infrastructure.db.repos.document_repo import DocumentRepo
from quizloom.infrastructure.db.repos.session_repo import SessionRepo
from quizloom.infrastructure.db.sqlite import SCHEMA_PATH, initialize_schema


def _bootstrap(tmp_path: Path) -> tuple[SessionService, str]:
    db_path = tmp_path / "quizloom.db"
    initialize_schema(db_path, SCHEMA_PATH)
    documents = DocumentRepo(db_path)
    fingerprint = fingerprint_text("session exam")
    now = now_utc_iso()
    documents.upsert_document(
        Document(
            fingerprint=fingerprint,
            name="exam.txt",
            size_bytes=12,
            content_kind="text",
            raw_content="session exam",
            total_questions=0,
            status=STATUS_PROCESSING,
            planned_units=1,
            completed_units=0,
            created_at=now,
            last_accessed_at=now,
        )
    )
    documents.append_questions(
        fingerprint,
        1,
        [
            QuestionDraft(prompt=f"Q{i}?", options=["a", "b", "c", "d"], correct_index=i % 4, explanation="e")
            for i in range(3)
        ],
    )
    return SessionService(documents, SessionRepo(db_path)), fingerprint


def test_answers_are_scored_by_percentage(tmp_path: Path) -> None:
    service, fingerprint = _bootstrap(tmp_path)
    session = service.start(fingerprint)

    service.record_answer(session.id, 1, 0)
    service.record_answer(session.id, 2, 3)

    score = service.score(session.id)
    assert score.total_questions == 3
    assert score.answered == 2
    assert score.correct == 1
    assert score.incorrect == 1
    assert score.unanswered == 1
    assert score.percentage == 33


def test_finish_closes_the_session(tmp_path: Path) -> None:
    service, fingerprint = _bootstrap(tmp_path)
    session = service.start(fingerprint)
    for ordinal, answer in ((1, 0), (2, 1), (3, 2)):
        service.record_answer(session.id, ordinal, answer)

    report = service.finish(session.id)
    assert report.percentage == 100

    stored = service.list_for_document(fingerprint)[0]
    assert stored.is_complete
    assert stored.score == 100.0
    assert stored.ended_at is not None
    with pytest.raises(SessionError):
        service.record_answer(session.id, 1, 1)


def test_flags_toggle(tmp_path: Path) -> None:
    service, fingerprint = _bootstrap(tmp_path)
    session = service.start(fingerprint)

    assert service.toggle_flag(session.id, 2).flagged == [2]
    assert service.toggle_flag(session.id, 2).flagged == []


def test_invalid_answers_and_sessions_are_rejected(tmp_path: Path) -> None:
    service, fingerprint = _bootstrap(tmp_path)
    session = service.start(fingerprint)

    with pytest.raises(SessionError):
        service.record_answer(session.id, 1, 4)
    with pytest.raises(SessionError):
        service.record_answer(session.id, 99, 0)
    with pytest.raises(SessionError):
        service.score("no-such-session")
    with pytest.raises(DocumentNotFoundError):
        service.start(fingerprint_text("missing"))


def test_clear_answers_removes_document_sessions(tmp_path: Path) -> None:
    service, fingerprint = _bootstrap(tmp_path)
    service.start(fingerprint)
    service.start(fingerprint)

    assert service.clear_answers(fingerprint) == 2
    assert service.list_for_document(fingerprint) == []
