from __future__ import annotations

from quizloom.core.config import PipelineSettings
from quizloom.core.errors import ConfigurationError
from quizloom.infrastructure.oracle.base import Oracle
from quizloom.infrastructure.oracle.placeholder import PlaceholderOracle


def build_oracle(settings: PipelineSettings, *, offline: bool = False) -> Oracle:
    if offline:
        return PlaceholderOracle()
    if not settings.gemini_api_key:
        raise ConfigurationError(
            "No Gemini API key configured. Set GEMINI_API_KEY or pass --offline for placeholder questions."
        )
    from quizloom.infrastructure.oracle.gemini import GeminiConfig, GeminiOracle

    return GeminiOracle(
        GeminiConfig(
            api_key=settings.gemini_api_key,
            model_name=settings.gemini_model,
            request_timeout_seconds=settings.oracle_timeout_seconds,
        )
    )
