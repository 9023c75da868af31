from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.table import Table

from quizloom.application.services.project_service import ProjectService
from quizloom.cli.context import CLIContext
from quizloom.cli.fingerprints import resolve_fingerprint
from quizloom.core.errors import DocumentNotFoundError
from quizloom.core.time import days_ago_utc_iso
from quizloom.infrastructure.db.repos.document_repo import DocumentRepo

DEFAULT_RETENTION_DAYS = 30


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("docs", help="List, inspect, delete and prune stored documents")
    docs_sub = parser.add_subparsers(dest="docs_command", required=True)

    list_parser = docs_sub.add_parser("list", help="List documents by most recent access")
    list_parser.add_argument("--limit", type=int, default=50)
    list_parser.set_defaults(handler=run_list)

    show_parser = docs_sub.add_parser("show", help="Show one document")
    show_parser.add_argument("fingerprint")
    show_parser.set_defaults(handler=run_show)

    delete_parser = docs_sub.add_parser("delete", help="Delete a document with its questions and sessions")
    delete_parser.add_argument("fingerprint")
    delete_parser.set_defaults(handler=run_delete)

    prune_parser = docs_sub.add_parser("prune", help="Delete documents not accessed recently")
    prune_parser.add_argument("--older-than-days", type=float, default=DEFAULT_RETENTION_DAYS)
    prune_parser.add_argument("--yes", action="store_true", help="Actually delete (default is a dry run)")
    prune_parser.set_defaults(handler=run_prune)


def _repo(ctx: CLIContext) -> DocumentRepo:
    ProjectService(ctx.paths).require_initialized()
    return DocumentRepo(ctx.paths.db_path)


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    documents = _repo(ctx).list_documents(limit=args.limit)

    table = Table(title=f"Documents ({len(documents)})")
    table.add_column("Fingerprint")
    table.add_column("Name", overflow="fold")
    table.add_column("Status")
    table.add_column("Units")
    table.add_column("Questions")
    table.add_column("Last accessed")
    for doc in documents:
        status = doc.status + (" (errors)" if doc.had_errors else "")
        table.add_row(
            doc.fingerprint[:12],
            doc.name,
            status,
            f"{doc.completed_units}/{doc.planned_units}",
            str(doc.total_questions),
            doc.last_accessed_at,
        )
    ctx.console.print(table)
    return 0


def run_show(args: argparse.Namespace, ctx: CLIContext) -> int:
    repo = _repo(ctx)
    fingerprint = resolve_fingerprint(repo, args.fingerprint)
    doc = repo.lookup(fingerprint)
    if doc is None:
        raise DocumentNotFoundError(f"Document not found: {fingerprint}")

    ctx.console.print(
        Panel.fit(
            "\n".join(
                [
                    f"Fingerprint: {doc.fingerprint}",
                    f"Name: {doc.name}",
                    f"Kind: {doc.content_kind} ({doc.size_bytes} bytes)",
                    f"Status: {doc.status}",
                    f"Units: {doc.completed_units}/{doc.planned_units} (failed: {doc.failed_units})",
                    f"Questions: {doc.total_questions}",
                    f"Created: {doc.created_at}",
                    f"Completed: {doc.completed_at or 'n/a'}",
                    f"Persisted units: {', '.join(str(u) for u in repo.persisted_units(fingerprint)) or 'none'}",
                ]
            ),
            title="Document",
        )
    )
    return 0


def run_delete(args: argparse.Namespace, ctx: CLIContext) -> int:
    repo = _repo(ctx)
    fingerprint = resolve_fingerprint(repo, args.fingerprint)
    if not repo.delete_document(fingerprint):
        raise DocumentNotFoundError(f"Document not found: {fingerprint}")
    ctx.console.print(f"[green]Deleted[/green] {fingerprint}")
    return 0


def run_prune(args: argparse.Namespace, ctx: CLIContext) -> int:
    repo = _repo(ctx)
    stale = repo.list_stale(days_ago_utc_iso(args.older_than_days))

    table = Table(title=f"Documents not accessed in {args.older_than_days:g} days ({len(stale)})")
    table.add_column("Fingerprint")
    table.add_column("Name", overflow="fold")
    table.add_column("Last accessed")
    for doc in stale:
        table.add_row(doc.fingerprint[:12], doc.name, doc.last_accessed_at)
    ctx.console.print(table)

    if not args.yes:
        ctx.console.print("[yellow]Dry run[/yellow]: pass --yes to delete these documents.")
        return 0

    deleted = sum(1 for doc in stale if repo.delete_document(doc.fingerprint))
    ctx.console.print(f"[green]Deleted[/green] {deleted} document(s)")
    return 0
