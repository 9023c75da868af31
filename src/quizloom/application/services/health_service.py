from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from quizloom.domain.models.question import MAX_OPTIONS, MIN_OPTIONS
from quizloom.infrastructure.db.sqlite import get_connection


@dataclass(slots=True)
class DoctorIssue:
    check: str
    level: str
    message: str


@dataclass(slots=True)
class DoctorReport:
    ok: bool
    checks_run: int
    issues: list[DoctorIssue]
    db_runtime: dict[str, object]


class HealthService:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def run_doctor(self) -> DoctorReport:
        issues: list[DoctorIssue] = []
        checks_run = 0

        # Check 1: database runtime pragmas support concurrent access.
        checks_run += 1
        with get_connection(self.db_path) as conn:
            journal_mode_raw = conn.execute("PRAGMA journal_mode;").fetchone()[0]
            busy_timeout_raw = conn.execute("PRAGMA busy_timeout;").fetchone()[0]
            foreign_keys_raw = conn.execute("PRAGMA foreign_keys;").fetchone()[0]
            synchronous_raw = conn.execute("PRAGMA synchronous;").fetchone()[0]

        journal_mode = str(journal_mode_raw).lower()
        busy_timeout_ms = int(busy_timeout_raw)
        foreign_keys = int(foreign_keys_raw)

        db_runtime: dict[str, object] = {
            "journal_mode": journal_mode,
            "busy_timeout_ms": busy_timeout_ms,
            "foreign_keys": bool(foreign_keys),
            "synchronous": int(synchronous_raw),
        }

        if journal_mode != "wal":
            issues.append(
                DoctorIssue(
                    check="db_runtime",
                    level="error",
                    message=f"SQLite journal_mode is '{journal_mode}', expected 'wal' for concurrent access.",
                )
            )
        if foreign_keys != 1:
            issues.append(
                DoctorIssue(
                    check="db_runtime",
                    level="error",
                    message="SQLite foreign_keys pragma is disabled.",
                )
            )
        if busy_timeout_ms <= 0:
            issues.append(
                DoctorIssue(
                    check="db_runtime",
                    level="error",
                    message="SQLite busy_timeout is disabled; concurrent writes may fail immediately.",
                )
            )
        elif busy_timeout_ms < 1_000:
            issues.append(
                DoctorIssue(
                    check="db_runtime",
                    level="warning",
                    message=f"SQLite busy_timeout is low ({busy_timeout_ms}ms); consider >= 1000ms.",
                )
            )

        # Check 2: unit counters stay within plan, complete documents are fully counted.
        checks_run += 1
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT fingerprint, status, planned_units, completed_units
                FROM documents
                WHERE completed_units > planned_units
                   OR (status = 'complete' AND completed_units != planned_units)
                """
            ).fetchall()
        for row in rows:
            issues.append(
                DoctorIssue(
                    check="unit_progress",
                    level="error",
                    message=(
                        f"Document {row['fingerprint'][:12]} ({row['status']}) has "
                        f"{row['completed_units']}/{row['planned_units']} units completed."
                    ),
                )
            )

        # Check 3: question records have consistent options and answer index.
        checks_run += 1
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT fingerprint, ordinal, options_json, correct_index FROM questions"
            ).fetchall()
        for row in rows:
            label = f"{row['fingerprint'][:12]}#{row['ordinal']}"
            try:
                options = json.loads(row["options_json"])
            except json.JSONDecodeError:
                issues.append(
                    DoctorIssue(check="question_shape", level="error", message=f"Invalid options JSON for {label}")
                )
                continue
            if not isinstance(options, list) or not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
                issues.append(
                    DoctorIssue(
                        check="question_shape",
                        level="error",
                        message=f"Question {label} has an option count outside {MIN_OPTIONS}-{MAX_OPTIONS}.",
                    )
                )
                continue
            if not 0 <= int(row["correct_index"]) < len(options):
                issues.append(
                    DoctorIssue(
                        check="question_shape",
                        level="error",
                        message=f"Question {label} has correct index {row['correct_index']} out of range.",
                    )
                )

        # Check 4: cached totals match persisted question rows.
        checks_run += 1
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT d.fingerprint, d.total_questions, COUNT(q.ordinal) AS persisted
                FROM documents d
                LEFT JOIN questions q ON q.fingerprint = d.fingerprint
                GROUP BY d.fingerprint
                HAVING d.total_questions != COUNT(q.ordinal)
                """
            ).fetchall()
        for row in rows:
            issues.append(
                DoctorIssue(
                    check="question_totals",
                    level="warning",
                    message=(
                        f"Document {row['fingerprint'][:12]} records {row['total_questions']} questions "
                        f"but {row['persisted']} are stored."
                    ),
                )
            )

        ok = not any(issue.level == "error" for issue in issues)
        return DoctorReport(ok=ok, checks_run=checks_run, issues=issues, db_runtime=db_runtime)
