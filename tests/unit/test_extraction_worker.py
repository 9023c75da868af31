import json
import threading

from quizloom.application.services.extraction_worker import ExtractionWorker, build_instructions
from quizloom.core.errors import OracleError
from quizloom.domain.models.work_unit import WorkUnit


class _StaticOracle:
    def __init__(self, response: str) -> None:
        self.response = response
        self.seen: list[tuple[object, str]] = []

    def generate(self, content, instructions):
        self.seen.append((content, instructions))
        return self.response


class _RaisingOracle:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    def generate(self, content, instructions):
        raise self.exc


class _HangingOracle:
    def __init__(self) -> None:
        self.release = threading.Event()

    def generate(self, content, instructions):
        self.release.wait(5)
        return "{}"


_ONE_QUESTION = json.dumps(
    {"questions": [{"question": "What?", "options": ["a", "b", "c", "d"], "correctAnswer": 2, "explanation": "e"}]}
)


def _unit(ordinal: int = 1, content: str | bytes = "1. What? A) a B) b C) c D) d") -> WorkUnit:
    return WorkUnit(ordinal=ordinal, content=content, is_first=ordinal == 1)


def test_successful_call_returns_normalized_records() -> None:
    oracle = _StaticOracle(_ONE_QUESTION)
    outcome = ExtractionWorker(oracle).process(_unit())

    assert outcome.failed is False
    assert outcome.unit == 1
    assert [r.correct_index for r in outcome.records] == [2]
    assert oracle.seen[0][0] == "1. What? A) a B) b C) c D) d"


def test_oracle_error_becomes_failed_outcome() -> None:
    outcome = ExtractionWorker(_RaisingOracle(OracleError("quota exceeded"))).process(_unit(2))

    assert outcome.failed is True
    assert outcome.unit == 2
    assert outcome.records == []
    assert "quota exceeded" in (outcome.error or "")


def test_unexpected_exception_becomes_failed_outcome() -> None:
    outcome = ExtractionWorker(_RaisingOracle(RuntimeError("boom"))).process(_unit())

    assert outcome.failed is True
    assert "RuntimeError" in (outcome.error or "")


def test_timeout_becomes_failed_outcome() -> None:
    oracle = _HangingOracle()
    try:
        outcome = ExtractionWorker(oracle, timeout_seconds=0.05).process(_unit())
    finally:
        oracle.release.set()

    assert outcome.failed is True
    assert "timeout" in (outcome.error or "")
    assert outcome.elapsed_seconds < 2


def test_unparseable_response_is_a_failed_unit() -> None:
    outcome = ExtractionWorker(_StaticOracle("The model refused.")).process(_unit())

    assert outcome.failed is True
    assert outcome.records == []


def test_instructions_depend_on_unit_position_and_kind() -> None:
    first = build_instructions(_unit(1))
    later = build_instructions(_unit(3))
    page = build_instructions(_unit(2, b"\x89PNG..."))

    assert "zero-based" in first
    assert "beginning" in first
    assert "mid-question" in later
    assert "image" in page
