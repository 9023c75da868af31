from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from quizloom.core.config import AppPaths
from quizloom.core.errors import ProjectNotInitializedError
from quizloom.infrastructure.db.sqlite import SCHEMA_PATH, initialize_schema


@dataclass(slots=True)
class InitResult:
    paths_created: list[Path]
    db_path: Path


class ProjectService:
    def __init__(self, paths: AppPaths) -> None:
        self.paths = paths

    def init_project(self) -> InitResult:
        paths_created: list[Path] = []
        if not self.paths.quizloom_dir.exists():
            paths_created.append(self.paths.quizloom_dir)
        self.paths.quizloom_dir.mkdir(parents=True, exist_ok=True)

        initialize_schema(self.paths.db_path, SCHEMA_PATH)
        return InitResult(paths_created=paths_created, db_path=self.paths.db_path)

    def is_initialized(self) -> bool:
        return self.paths.db_path.exists()

    def require_initialized(self) -> None:
        if not self.is_initialized():
            raise ProjectNotInitializedError(
                f"No quizloom database at {self.paths.db_path}. Run 'quizloom init' first."
            )
