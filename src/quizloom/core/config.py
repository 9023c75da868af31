from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppPaths:
    project_root: Path
    quizloom_dir: Path
    db_path: Path


@dataclass(frozen=True)
class PipelineSettings:
    rate_limit_seconds: float = 5.0
    oracle_timeout_seconds: float = 120.0
    questions_per_unit: int = 20
    max_units: int = 5
    small_document_chars: int = 25_000
    low_question_threshold: int = 20
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.0-flash"


DEFAULT_QUIZLOOM_DIRNAME = ".quizloom"


def load_paths(project_root: Path | None = None) -> AppPaths:
    root = (project_root or Path.cwd()).expanduser().resolve()

    quizloom_home_raw = os.getenv("QUIZLOOM_HOME")
    if quizloom_home_raw:
        quizloom_dir = Path(quizloom_home_raw).expanduser().resolve()
    else:
        quizloom_dir = root / DEFAULT_QUIZLOOM_DIRNAME

    return AppPaths(
        project_root=root,
        quizloom_dir=quizloom_dir,
        db_path=quizloom_dir / "quizloom.db",
    )


def _read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_settings() -> PipelineSettings:
    defaults = PipelineSettings()
    api_key = (os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or "").strip()
    model = (os.getenv("QUIZLOOM_GEMINI_MODEL") or "").strip()
    return PipelineSettings(
        rate_limit_seconds=_read_float_env("QUIZLOOM_RATE_LIMIT_SECONDS", defaults.rate_limit_seconds),
        oracle_timeout_seconds=_read_float_env(
            "QUIZLOOM_ORACLE_TIMEOUT_SECONDS", defaults.oracle_timeout_seconds
        ),
        questions_per_unit=_read_int_env("QUIZLOOM_QUESTIONS_PER_UNIT", defaults.questions_per_unit),
        max_units=_read_int_env("QUIZLOOM_MAX_UNITS", defaults.max_units),
        small_document_chars=_read_int_env(
            "QUIZLOOM_SMALL_DOCUMENT_CHARS", defaults.small_document_chars
        ),
        low_question_threshold=_read_int_env(
            "QUIZLOOM_LOW_QUESTION_THRESHOLD", defaults.low_question_threshold
        ),
        gemini_api_key=api_key or None,
        gemini_model=model or defaults.gemini_model,
    )


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = str(raw).strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default
