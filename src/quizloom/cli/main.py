from __future__ import annotations

import argparse
import logging
from pathlib import Path

from rich.console import Console

from quizloom.cli.commands import (
    docs_cmd,
    doctor_cmd,
    init_cmd,
    questions_cmd,
    submit_cmd,
    transfer_cmd,
    web_cmd,
)
from quizloom.cli.context import CLIContext
from quizloom.core.config import load_paths, load_settings
from quizloom.core.errors import QuizloomError
from quizloom.core.logging import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quizloom",
        description="Progressive multiple-choice question extraction",
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path.cwd(),
        help="Project root to use for .quizloom data (default: current working directory)",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)

    subparsers = parser.add_subparsers(dest="command", required=True)
    init_cmd.register(subparsers)
    submit_cmd.register(subparsers)
    docs_cmd.register(subparsers)
    questions_cmd.register(subparsers)
    transfer_cmd.register(subparsers)
    doctor_cmd.register(subparsers)
    web_cmd.register(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    console = Console()

    paths = load_paths(args.project_root)
    ctx = CLIContext(paths=paths, console=console, settings=load_settings())

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2

    try:
        return handler(args, ctx)
    except QuizloomError as exc:
        logger.error(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
