from __future__ import annotations

import argparse
import json

from rich.table import Table

from quizloom.application.services.project_service import ProjectService
from quizloom.application.services.transfer_service import TransferService
from quizloom.cli.context import CLIContext
from quizloom.cli.fingerprints import resolve_fingerprint
from quizloom.infrastructure.db.repos.document_repo import DocumentRepo


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("questions", help="Print stored questions for a document")
    parser.add_argument("fingerprint")
    parser.add_argument("--unit", type=int, default=None, help="Only questions from this unit")
    parser.add_argument("--limit", type=int, default=None)
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of a table")
    parser.set_defaults(handler=run)


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    repo = DocumentRepo(ctx.paths.db_path)
    fingerprint = resolve_fingerprint(repo, args.fingerprint)
    # Raises DocumentNotFoundError for unknown documents.
    TransferService(repo).export_metadata(fingerprint)
    questions = repo.list_questions(fingerprint, unit=args.unit, limit=args.limit)

    if args.json:
        payload = [
            {
                "ordinal": q.ordinal,
                "unit": q.unit,
                "question": q.prompt,
                "options": q.options,
                "correctAnswer": q.correct_index,
                "explanation": q.explanation,
                "provenance": q.provenance,
            }
            for q in questions
        ]
        ctx.console.print_json(json.dumps(payload, ensure_ascii=False))
        return 0

    table = Table(title=f"Questions ({len(questions)})")
    table.add_column("#")
    table.add_column("Unit")
    table.add_column("Question", overflow="fold")
    table.add_column("Options", overflow="fold")
    table.add_column("Explanation", overflow="fold")
    for q in questions:
        options = "\n".join(
            f"{'*' if i == q.correct_index else ' '} {chr(ord('A') + i)}. {opt}" for i, opt in enumerate(q.options)
        )
        table.add_row(str(q.ordinal), str(q.unit), q.prompt, options, q.explanation)
    ctx.console.print(table)
    return 0
