from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import google.generativeai as genai

from quizloom.core.errors import ConfigurationError, OracleError

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "gemini-2.0-flash"


@dataclass(frozen=True)
class GeminiConfig:
    api_key: str
    model_name: str = DEFAULT_MODEL_NAME
    temperature: float = 0.2
    max_output_tokens: int = 8192
    request_timeout_seconds: float = 120.0


def guess_image_mime_type(data: bytes) -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    return "image/png"


class GeminiOracle:
    def __init__(self, config: GeminiConfig) -> None:
        if not config.api_key:
            raise ConfigurationError("A Gemini API key is required (set GEMINI_API_KEY).")
        self.config = config
        genai.configure(api_key=config.api_key)
        generation_config: dict[str, Any] = {
            "temperature": float(config.temperature),
            "max_output_tokens": int(config.max_output_tokens),
            "response_mime_type": "application/json",
        }
        self._model = genai.GenerativeModel(
            model_name=config.model_name,
            generation_config=generation_config,
        )

    def generate(self, content: str | bytes, instructions: str) -> str:
        if isinstance(content, bytes):
            parts: list[Any] = [
                {"mime_type": guess_image_mime_type(content), "data": content},
                instructions,
            ]
        else:
            parts = [f"{instructions}\n\nContent:\n{content}"]

        try:
            resp = self._model.generate_content(
                parts,
                request_options={"timeout": self.config.request_timeout_seconds},
            )
            text = getattr(resp, "text", None)
        except Exception as exc:
            raise OracleError(f"Gemini request failed: {exc}") from exc

        if not text:
            raise OracleError("Gemini returned an empty response.")
        logger.debug("Gemini returned %d characters", len(text))
        return text
