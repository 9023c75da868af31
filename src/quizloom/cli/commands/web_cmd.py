from __future__ import annotations

import argparse

import uvicorn

from quizloom.cli.context import CLIContext
from quizloom.web.app import create_app


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("web", help="Run the HTTP API server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--offline", action="store_true", help="Serve placeholder questions instead of calling Gemini")
    parser.set_defaults(handler=run)


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    app = create_app(ctx.paths, settings=ctx.settings, offline=args.offline)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0
