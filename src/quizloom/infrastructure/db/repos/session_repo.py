from __future__ import annotations

import json
from pathlib import Path

from quizloom.domain.models.session import QuizSession
from quizloom.infrastructure.db.sqlite import get_connection


class SessionRepo:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def save(self, session: QuizSession) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO sessions (
                    id,
                    fingerprint,
                    started_at,
                    ended_at,
                    current_question,
                    answers_json,
                    flagged_json,
                    is_complete,
                    score,
                    time_spent_seconds
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    ended_at = excluded.ended_at,
                    current_question = excluded.current_question,
                    answers_json = excluded.answers_json,
                    flagged_json = excluded.flagged_json,
                    is_complete = excluded.is_complete,
                    score = excluded.score,
                    time_spent_seconds = excluded.time_spent_seconds
                """,
                (
                    session.id,
                    session.fingerprint,
                    session.started_at,
                    session.ended_at,
                    session.current_question,
                    json.dumps({str(k): v for k, v in session.answers.items()}),
                    json.dumps(sorted(set(session.flagged))),
                    int(session.is_complete),
                    session.score,
                    session.time_spent_seconds,
                ),
            )
            conn.commit()

    def get(self, session_id: str) -> QuizSession | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return self._to_model(row) if row else None

    def list_for_document(self, fingerprint: str) -> list[QuizSession]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM sessions
                WHERE fingerprint = ?
                ORDER BY started_at DESC
                """,
                (fingerprint,),
            ).fetchall()
        return [self._to_model(row) for row in rows]

    def clear_answers(self, fingerprint: str) -> int:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE fingerprint = ?", (fingerprint,))
            conn.commit()
            return int(cursor.rowcount or 0)

    @staticmethod
    def _to_model(row) -> QuizSession:
        answers_raw = json.loads(row["answers_json"] or "{}")
        flagged_raw = json.loads(row["flagged_json"] or "[]")
        return QuizSession(
            id=row["id"],
            fingerprint=row["fingerprint"],
            started_at=row["started_at"],
            ended_at=row["ended_at"],
            current_question=int(row["current_question"] or 0),
            answers={int(k): int(v) for k, v in answers_raw.items()},
            flagged=[int(v) for v in flagged_raw],
            is_complete=bool(int(row["is_complete"] or 0)),
            score=float(row["score"]) if row["score"] is not None else None,
            time_spent_seconds=int(row["time_spent_seconds"] or 0),
        )
