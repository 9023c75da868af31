from __future__ import annotations

from dataclasses import dataclass, field

from rich.console import Console

from quizloom.core.config import AppPaths, PipelineSettings


@dataclass(slots=True)
class CLIContext:
    paths: AppPaths
    console: Console
    settings: PipelineSettings = field(default_factory=PipelineSettings)
