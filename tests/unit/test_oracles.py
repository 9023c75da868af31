import json

import pytest

from quizloom.core.config import PipelineSettings
from quizloom.core.errors import ConfigurationError
from quizloom.infrastructure.oracle.factory import build_oracle
from quizloom.infrastructure.oracle.gemini import guess_image_mime_type
from quizloom.infrastructure.oracle.placeholder import PlaceholderOracle


def test_offline_mode_uses_placeholder_questions() -> None:
    oracle = build_oracle(PipelineSettings(), offline=True)
    assert isinstance(oracle, PlaceholderOracle)

    payload = json.loads(oracle.generate("short", "instructions"))
    assert len(payload["questions"]) == 3
    assert all(q["source"] == "placeholder" for q in payload["questions"])


def test_missing_api_key_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        build_oracle(PipelineSettings(gemini_api_key=None))


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        (b"\x89PNG\r\n\x1a\nrest", "image/png"),
        (b"\xff\xd8\xff\xe0rest", "image/jpeg"),
        (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
        (b"GIF89a....", "image/gif"),
    ],
)
def test_image_mime_type_sniffing(data: bytes, expected: str) -> None:
    assert guess_image_mime_type(data) == expected
