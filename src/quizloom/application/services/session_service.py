from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from quizloom.core.errors import DocumentNotFoundError, SessionError
from quizloom.core.ids import new_uuid
from quizloom.core.time import now_utc_iso
from quizloom.domain.models.session import QuizSession
from quizloom.infrastructure.db.repos.document_repo import DocumentRepo
from quizloom.infrastructure.db.repos.session_repo import SessionRepo


@dataclass(slots=True)
class ScoreReport:
    session_id: str
    total_questions: int
    answered: int
    correct: int
    incorrect: int
    unanswered: int
    percentage: int


class SessionService:
    def __init__(self, documents: DocumentRepo, sessions: SessionRepo) -> None:
        self.documents = documents
        self.sessions = sessions

    def start(self, fingerprint: str) -> QuizSession:
        if self.documents.lookup(fingerprint) is None:
            raise DocumentNotFoundError(f"Document not found: {fingerprint}")
        session = QuizSession(id=new_uuid(), fingerprint=fingerprint, started_at=now_utc_iso())
        self.sessions.save(session)
        return session

    def record_answer(self, session_id: str, ordinal: int, option_index: int) -> QuizSession:
        session = self._require_open(session_id)
        question = self._question(session.fingerprint, ordinal)
        if not 0 <= option_index < len(question.options):
            raise SessionError(
                f"Option {option_index} is out of range for question {ordinal} "
                f"({len(question.options)} options)."
            )
        session.answers[ordinal] = option_index
        session.current_question = ordinal
        self.sessions.save(session)
        return session

    def toggle_flag(self, session_id: str, ordinal: int) -> QuizSession:
        session = self._require_open(session_id)
        self._question(session.fingerprint, ordinal)
        if ordinal in session.flagged:
            session.flagged.remove(ordinal)
        else:
            session.flagged.append(ordinal)
        self.sessions.save(session)
        return session

    def finish(self, session_id: str) -> ScoreReport:
        session = self._require_open(session_id)
        report = self._score(session)
        ended_at = now_utc_iso()
        session.ended_at = ended_at
        session.is_complete = True
        session.score = float(report.percentage)
        session.time_spent_seconds = _seconds_between(session.started_at, ended_at)
        self.sessions.save(session)
        return report

    def score(self, session_id: str) -> ScoreReport:
        return self._score(self._require(session_id))

    def list_for_document(self, fingerprint: str) -> list[QuizSession]:
        return self.sessions.list_for_document(fingerprint)

    def clear_answers(self, fingerprint: str) -> int:
        return self.sessions.clear_answers(fingerprint)

    def _score(self, session: QuizSession) -> ScoreReport:
        questions = self.documents.list_questions(session.fingerprint)
        answer_key = {q.ordinal: q.correct_index for q in questions}
        answered = [ordinal for ordinal in session.answers if ordinal in answer_key]
        correct = sum(1 for ordinal in answered if session.answers[ordinal] == answer_key[ordinal])
        total = len(questions)
        return ScoreReport(
            session_id=session.id,
            total_questions=total,
            answered=len(answered),
            correct=correct,
            incorrect=len(answered) - correct,
            unanswered=total - len(answered),
            percentage=round(correct / total * 100) if total else 0,
        )

    def _require(self, session_id: str) -> QuizSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionError(f"Session not found: {session_id}")
        return session

    def _require_open(self, session_id: str) -> QuizSession:
        session = self._require(session_id)
        if session.is_complete:
            raise SessionError(f"Session {session_id} is already finished.")
        return session

    def _question(self, fingerprint: str, ordinal: int):
        matches = [q for q in self.documents.list_questions(fingerprint) if q.ordinal == ordinal]
        if not matches:
            raise SessionError(f"Question {ordinal} does not exist for document {fingerprint[:12]}.")
        return matches[0]


def _seconds_between(start_iso: str, end_iso: str) -> int:
    try:
        delta = datetime.fromisoformat(end_iso) - datetime.fromisoformat(start_iso)
    except ValueError:
        return 0
    return max(0, int(delta.total_seconds()))
