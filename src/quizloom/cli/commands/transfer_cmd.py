from __future__ import annotations

import argparse
import json
from pathlib import Path

from quizloom.application.services.project_service import ProjectService
from quizloom.application.services.transfer_service import TransferService
from quizloom.cli.context import CLIContext
from quizloom.cli.fingerprints import resolve_fingerprint
from quizloom.core.errors import TransferError
from quizloom.infrastructure.db.repos.document_repo import DocumentRepo


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    export_parser = subparsers.add_parser("export", help="Write a document's questions to a transfer bundle")
    export_parser.add_argument("fingerprint")
    export_parser.add_argument("out", type=Path)
    export_parser.set_defaults(handler=run_export)

    import_parser = subparsers.add_parser("import", help="Import a transfer bundle produced by 'export'")
    import_parser.add_argument("bundle", type=Path)
    import_parser.set_defaults(handler=run_import)


def _service(ctx: CLIContext) -> TransferService:
    ProjectService(ctx.paths).require_initialized()
    return TransferService(DocumentRepo(ctx.paths.db_path))


def run_export(args: argparse.Namespace, ctx: CLIContext) -> int:
    service = _service(ctx)
    fingerprint = resolve_fingerprint(service.store, args.fingerprint)
    bundle = service.export_bundle(fingerprint)
    args.out.parent.mkdir(parents=True, exist_ok=True)
    args.out.write_text(json.dumps(bundle, indent=2, ensure_ascii=False), encoding="utf-8")
    ctx.console.print(f"[green]Exported[/green] {len(bundle['questions'])} questions to {args.out}")
    return 0


def run_import(args: argparse.Namespace, ctx: CLIContext) -> int:
    service = _service(ctx)
    try:
        bundle = json.loads(args.bundle.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise TransferError(f"Cannot read bundle {args.bundle}: {exc}") from exc
    inserted = service.import_bundle(bundle)
    ctx.console.print(
        f"[green]Imported[/green] {bundle['metadata']['fingerprint'][:12]}: {inserted} new question(s)"
    )
    return 0
