from __future__ import annotations

import argparse
from pathlib import Path

from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from quizloom.application.services.pipeline_service import STATE_PROCESSING, PipelineService
from quizloom.application.services.project_service import ProjectService
from quizloom.cli.context import CLIContext
from quizloom.core.errors import ValidationError
from quizloom.core.events import UNIT_COMPLETED, UnitCompleted
from quizloom.infrastructure.oracle.factory import build_oracle

PREVIEW_LIMIT = 10


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("submit", help="Extract questions from a text file or page images")
    parser.add_argument("path", type=Path, nargs="?", help="UTF-8 text file extracted from the source document")
    parser.add_argument("--pages", type=Path, nargs="+", help="Page images in page order (instead of PATH)")
    parser.add_argument("--name", help="Display name (default: file name)")
    parser.add_argument("--offline", action="store_true", help="Use placeholder questions instead of Gemini")
    parser.add_argument("--wait", action="store_true", help="Block until every unit has been processed")
    parser.set_defaults(handler=run)


def _load_content(args: argparse.Namespace) -> tuple[str | list[bytes], str]:
    if args.pages:
        if args.path is not None:
            raise ValidationError("Pass either PATH or --pages, not both.")
        missing = [str(p) for p in args.pages if not p.is_file()]
        if missing:
            raise ValidationError(f"Page image(s) not found: {', '.join(missing)}")
        return [p.read_bytes() for p in args.pages], args.name or args.pages[0].stem
    if args.path is None:
        raise ValidationError("Provide a text file PATH or --pages.")
    if not args.path.is_file():
        raise ValidationError(f"File not found: {args.path}")
    return args.path.read_text(encoding="utf-8"), args.name or args.path.name


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    content, name = _load_content(args)

    oracle = build_oracle(ctx.settings, offline=args.offline)
    pipeline = PipelineService.build(ctx.paths.db_path, oracle=oracle, settings=ctx.settings)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total} units"),
        TimeElapsedColumn(),
        console=ctx.console,
    )

    try:
        with progress:
            task = progress.add_task(f"Extracting first batch from {name}...", total=None)

            def on_unit(event: UnitCompleted) -> None:
                progress.update(
                    task,
                    total=event.planned_units,
                    completed=event.completed_units,
                    description=f"Unit {event.unit}: {event.total_questions} questions so far",
                )

            pipeline.events.on(UNIT_COMPLETED, on_unit)
            result = pipeline.submit(content, name=name)

            if result.state == STATE_PROCESSING and args.wait:
                progress.update(task, total=result.planned_units, completed=result.completed_units)
                pipeline.wait(result.fingerprint)
                result = pipeline.status(result.fingerprint)
            progress.update(task, description=f"Finished with state '{result.state}'")
    finally:
        pipeline.shutdown()

    ctx.console.print(
        Panel.fit(
            "\n".join(
                [
                    f"Fingerprint: {result.fingerprint}",
                    f"State: {result.state}",
                    f"From cache: {'yes' if result.from_cache else 'no'}",
                    f"Units: {result.completed_units}/{result.planned_units}",
                    f"Questions: {len(result.questions)}",
                ]
            ),
            title="Submission",
        )
    )

    if result.state == STATE_PROCESSING:
        ctx.console.print(
            "[yellow]Remaining units were not processed.[/yellow] "
            "Submit again (optionally with --wait) to resume from where extraction stopped."
        )

    table = Table(title=f"Questions (first {min(PREVIEW_LIMIT, len(result.questions))})")
    table.add_column("#")
    table.add_column("Unit")
    table.add_column("Question", overflow="fold")
    table.add_column("Answer", overflow="fold")
    table.add_column("Provenance")
    for question in result.questions[:PREVIEW_LIMIT]:
        table.add_row(
            str(question.ordinal),
            str(question.unit),
            question.prompt,
            question.options[question.correct_index],
            question.provenance,
        )
    ctx.console.print(table)
    return 0
