from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path

from quizloom.core.errors import DocumentNotFoundError, DuplicateUnitError, StoreError
from quizloom.core.time import now_utc_iso
from quizloom.domain.models.document import Document
from quizloom.domain.models.question import Question, QuestionDraft
from quizloom.infrastructure.db.sqlite import get_connection

_LOCKS_GUARD = threading.Lock()
_DOCUMENT_LOCKS: dict[tuple[str, str], threading.RLock] = {}


def _document_lock(db_path: Path, fingerprint: str) -> threading.RLock:
    key = (str(db_path.expanduser().resolve()), fingerprint)
    with _LOCKS_GUARD:
        lock = _DOCUMENT_LOCKS.get(key)
        if lock is None:
            lock = threading.RLock()
            _DOCUMENT_LOCKS[key] = lock
        return lock


class DocumentRepo:
    """Content-addressed store for documents and their question records.

    Every write for one fingerprint is serialized through a lock shared by all
    repo instances pointing at the same database file. Appends and progress
    updates each run inside a single transaction, so readers never observe a
    partially written unit.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def lookup(self, fingerprint: str, *, touch: bool = True) -> Document | None:
        with get_connection(self.db_path) as conn:
            if touch:
                conn.execute(
                    "UPDATE documents SET last_accessed_at = ? WHERE fingerprint = ?",
                    (now_utc_iso(), fingerprint),
                )
                conn.commit()
            row = conn.execute(
                "SELECT * FROM documents WHERE fingerprint = ?",
                (fingerprint,),
            ).fetchone()
        return self._to_document(row) if row else None

    def upsert_document(self, document: Document) -> None:
        with _document_lock(self.db_path, document.fingerprint):
            with get_connection(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO documents (
                        fingerprint,
                        name,
                        size_bytes,
                        content_kind,
                        raw_content,
                        total_questions,
                        status,
                        planned_units,
                        completed_units,
                        failed_units,
                        had_errors,
                        created_at,
                        last_accessed_at,
                        completed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(fingerprint) DO UPDATE SET
                        name = excluded.name,
                        size_bytes = excluded.size_bytes,
                        raw_content = COALESCE(excluded.raw_content, documents.raw_content),
                        planned_units = MAX(excluded.planned_units, documents.completed_units),
                        status = CASE
                            WHEN documents.status = 'complete' THEN documents.status
                            ELSE excluded.status
                        END,
                        last_accessed_at = excluded.last_accessed_at
                    """,
                    (
                        document.fingerprint,
                        document.name,
                        document.size_bytes,
                        document.content_kind,
                        document.raw_content,
                        document.total_questions,
                        document.status,
                        document.planned_units,
                        document.completed_units,
                        document.failed_units,
                        int(document.had_errors),
                        document.created_at,
                        document.last_accessed_at,
                        document.completed_at,
                    ),
                )
                conn.commit()

    def append_questions(self, fingerprint: str, unit: int, drafts: list[QuestionDraft]) -> list[Question]:
        if not drafts:
            return []
        now = now_utc_iso()
        with _document_lock(self.db_path, fingerprint):
            try:
                return self._append_locked(fingerprint, unit, drafts, now)
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to store unit {unit} of {fingerprint[:12]}: {exc}") from exc

    def _append_locked(self, fingerprint: str, unit: int, drafts: list[QuestionDraft], now: str) -> list[Question]:
        with get_connection(self.db_path) as conn:
            self._require_document(conn, fingerprint)
            existing = conn.execute(
                "SELECT 1 FROM questions WHERE fingerprint = ? AND unit = ? LIMIT 1",
                (fingerprint, unit),
            ).fetchone()
            if existing is not None:
                raise DuplicateUnitError(
                    f"Questions for unit {unit} of {fingerprint[:12]} are already stored."
                )
            next_ordinal = int(
                conn.execute(
                    "SELECT COALESCE(MAX(ordinal), 0) FROM questions WHERE fingerprint = ?",
                    (fingerprint,),
                ).fetchone()[0]
            ) + 1
            stored: list[Question] = []
            try:
                for offset, draft in enumerate(drafts):
                    question = Question(
                        fingerprint=fingerprint,
                        ordinal=next_ordinal + offset,
                        unit=unit,
                        prompt=draft.prompt,
                        options=list(draft.options),
                        correct_index=draft.correct_index,
                        explanation=draft.explanation,
                        provenance=draft.provenance,
                        created_at=now,
                    )
                    self._insert_question(conn, question, ignore_existing=False)
                    stored.append(question)
                self._refresh_total(conn, fingerprint, now)
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        return stored

    def record_unit_progress(self, fingerprint: str, unit: int, *, failed: bool = False) -> Document:
        now = now_utc_iso()
        with _document_lock(self.db_path, fingerprint):
            try:
                with get_connection(self.db_path) as conn:
                    cursor = conn.execute(
                        """
                        UPDATE documents
                        SET completed_units = MIN(planned_units, MAX(completed_units, ?)),
                            failed_units = failed_units + ?,
                            had_errors = CASE WHEN ? = 1 THEN 1 ELSE had_errors END,
                            last_accessed_at = ?
                        WHERE fingerprint = ?
                        """,
                        (unit, int(failed), int(failed), now, fingerprint),
                    )
                    if int(cursor.rowcount or 0) == 0:
                        raise DocumentNotFoundError(f"Document not found: {fingerprint}")
                    conn.commit()
                    row = conn.execute("SELECT * FROM documents WHERE fingerprint = ?", (fingerprint,)).fetchone()
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to record progress for unit {unit} of {fingerprint[:12]}: {exc}") from exc
        return self._to_document(row)

    def mark_complete(self, fingerprint: str, *, had_errors: bool = False) -> bool:
        """Transition a document to ``complete``; returns False if it already was."""
        now = now_utc_iso()
        with _document_lock(self.db_path, fingerprint):
            with get_connection(self.db_path) as conn:
                self._require_document(conn, fingerprint)
                cursor = conn.execute(
                    """
                    UPDATE documents
                    SET status = 'complete',
                        completed_units = planned_units,
                        total_questions = (SELECT COUNT(*) FROM questions WHERE fingerprint = ?),
                        had_errors = CASE WHEN ? = 1 THEN 1 ELSE had_errors END,
                        completed_at = ?,
                        last_accessed_at = ?
                    WHERE fingerprint = ?
                      AND status != 'complete'
                    """,
                    (fingerprint, int(had_errors), now, now, fingerprint),
                )
                conn.commit()
                return int(cursor.rowcount or 0) > 0

    def persisted_units(self, fingerprint: str) -> list[int]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT DISTINCT unit FROM questions WHERE fingerprint = ? ORDER BY unit ASC",
                (fingerprint,),
            ).fetchall()
        return [int(row["unit"]) for row in rows]

    def list_questions(
        self,
        fingerprint: str,
        *,
        unit: int | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Question]:
        clauses = ["fingerprint = ?"]
        params: list[object] = [fingerprint]
        if unit is not None:
            clauses.append("unit = ?")
            params.append(unit)
        sql = f"SELECT * FROM questions WHERE {' AND '.join(clauses)} ORDER BY ordinal ASC"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([max(0, int(limit)), max(0, int(offset))])
        elif offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(max(0, int(offset)))
        with get_connection(self.db_path) as conn:
            conn.execute(
                "UPDATE documents SET last_accessed_at = ? WHERE fingerprint = ?",
                (now_utc_iso(), fingerprint),
            )
            conn.commit()
            rows = conn.execute(sql, params).fetchall()
        return [self._to_question(row) for row in rows]

    def count_questions(self, fingerprint: str) -> int:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM questions WHERE fingerprint = ?",
                (fingerprint,),
            ).fetchone()
        return int(row[0] or 0)

    def list_documents(self, limit: int = 100) -> list[Document]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM documents
                ORDER BY last_accessed_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._to_document(row) for row in rows]

    def fingerprints_with_prefix(self, prefix: str, limit: int = 10) -> list[str]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT fingerprint FROM documents WHERE fingerprint LIKE ? ESCAPE '\\' ORDER BY fingerprint LIMIT ?",
                (f"{escaped}%", limit),
            ).fetchall()
        return [row["fingerprint"] for row in rows]

    def list_stale(self, before: str) -> list[Document]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM documents
                WHERE last_accessed_at < ?
                ORDER BY last_accessed_at ASC
                """,
                (before,),
            ).fetchall()
        return [self._to_document(row) for row in rows]

    def delete_document(self, fingerprint: str) -> bool:
        with _document_lock(self.db_path, fingerprint):
            with get_connection(self.db_path) as conn:
                cursor = conn.execute("DELETE FROM documents WHERE fingerprint = ?", (fingerprint,))
                conn.commit()
                return int(cursor.rowcount or 0) > 0

    def import_document(self, metadata: Document, questions: list[Question]) -> int:
        """Insert a synced document; re-importing the same fingerprint adds nothing twice."""
        now = now_utc_iso()
        inserted = 0
        with _document_lock(self.db_path, metadata.fingerprint):
            with get_connection(self.db_path) as conn:
                try:
                    conn.execute(
                        """
                        INSERT OR IGNORE INTO documents (
                            fingerprint,
                            name,
                            size_bytes,
                            content_kind,
                            raw_content,
                            total_questions,
                            status,
                            planned_units,
                            completed_units,
                            failed_units,
                            had_errors,
                            created_at,
                            last_accessed_at,
                            completed_at
                        ) VALUES (?, ?, ?, ?, NULL, 0, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            metadata.fingerprint,
                            metadata.name,
                            metadata.size_bytes,
                            metadata.content_kind,
                            metadata.status,
                            metadata.planned_units,
                            min(metadata.completed_units, metadata.planned_units),
                            metadata.failed_units,
                            int(metadata.had_errors),
                            metadata.created_at or now,
                            now,
                            metadata.completed_at,
                        ),
                    )
                    for question in questions:
                        if question.fingerprint != metadata.fingerprint:
                            continue
                        inserted += self._insert_question(conn, question, ignore_existing=True)
                    self._refresh_total(conn, metadata.fingerprint, now)
                    conn.commit()
                except sqlite3.IntegrityError as exc:
                    conn.rollback()
                    raise StoreError(f"Failed to import {metadata.fingerprint[:12]}: {exc}") from exc
        return inserted

    def metadata_view(self, fingerprint: str) -> dict[str, object] | None:
        document = self.lookup(fingerprint)
        if document is None:
            return None
        return {
            "fingerprint": document.fingerprint,
            "name": document.name,
            "size_bytes": document.size_bytes,
            "content_kind": document.content_kind,
            "total_questions": document.total_questions,
            "status": document.status,
            "planned_units": document.planned_units,
            "completed_units": document.completed_units,
            "failed_units": document.failed_units,
            "had_errors": document.had_errors,
            "created_at": document.created_at,
            "completed_at": document.completed_at,
        }

    @staticmethod
    def _require_document(conn: sqlite3.Connection, fingerprint: str) -> None:
        row = conn.execute("SELECT 1 FROM documents WHERE fingerprint = ?", (fingerprint,)).fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document not found: {fingerprint}")

    @staticmethod
    def _refresh_total(conn: sqlite3.Connection, fingerprint: str, now: str) -> None:
        conn.execute(
            """
            UPDATE documents
            SET total_questions = (SELECT COUNT(*) FROM questions WHERE fingerprint = ?),
                last_accessed_at = ?
            WHERE fingerprint = ?
            """,
            (fingerprint, now, fingerprint),
        )

    @staticmethod
    def _insert_question(conn: sqlite3.Connection, question: Question, *, ignore_existing: bool) -> int:
        verb = "INSERT OR IGNORE" if ignore_existing else "INSERT"
        cursor = conn.execute(
            f"""
            {verb} INTO questions (
                fingerprint,
                ordinal,
                unit,
                prompt,
                options_json,
                correct_index,
                explanation,
                provenance,
                created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                question.fingerprint,
                question.ordinal,
                question.unit,
                question.prompt,
                json.dumps(question.options, ensure_ascii=False),
                question.correct_index,
                question.explanation,
                question.provenance,
                question.created_at,
            ),
        )
        return int(cursor.rowcount or 0)

    @staticmethod
    def _to_document(row) -> Document:
        return Document(
            fingerprint=row["fingerprint"],
            name=row["name"],
            size_bytes=int(row["size_bytes"] or 0),
            content_kind=row["content_kind"],
            raw_content=row["raw_content"],
            total_questions=int(row["total_questions"] or 0),
            status=row["status"],
            planned_units=int(row["planned_units"] or 0),
            completed_units=int(row["completed_units"] or 0),
            created_at=row["created_at"],
            last_accessed_at=row["last_accessed_at"],
            failed_units=int(row["failed_units"] or 0),
            had_errors=bool(int(row["had_errors"] or 0)),
            completed_at=row["completed_at"],
        )

    @staticmethod
    def _to_question(row) -> Question:
        return Question(
            fingerprint=row["fingerprint"],
            ordinal=int(row["ordinal"]),
            unit=int(row["unit"]),
            prompt=row["prompt"],
            options=list(json.loads(row["options_json"])),
            correct_index=int(row["correct_index"]),
            explanation=row["explanation"],
            provenance=row["provenance"],
            created_at=row["created_at"],
        )
