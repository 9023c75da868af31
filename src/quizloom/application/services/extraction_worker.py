from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field

from quizloom.application.services.response_normalizer import ResponseNormalizer
from quizloom.core.errors import OracleError
from quizloom.domain.models.question import QuestionDraft
from quizloom.domain.models.work_unit import WorkUnit
from quizloom.infrastructure.oracle.base import Oracle

logger = logging.getLogger(__name__)

_BASE_INSTRUCTIONS = """
You are extracting multiple-choice questions from a section of an exam or quiz document.

Rules:
- Extract every multiple-choice question that appears in the content.
- Preserve the original number of options for each question (4 or 5). Do not invent or drop options.
- If the source states the correct answer (answer key, marked option, "Answer: B"), use it.
  Only infer the answer when the source does not state one.
- Give exactly one short explanation per question.
- correctAnswer is the zero-based index of the correct option.

Respond with JSON only, in this shape:
{
  "questions": [
    {
      "question": "Question text?",
      "options": ["Option A", "Option B", "Option C", "Option D"],
      "correctAnswer": 0,
      "explanation": "Why this option is correct."
    }
  ]
}
""".strip()


def build_instructions(unit: WorkUnit) -> str:
    if unit.is_image:
        scope = f"This is page {unit.ordinal} of the document, supplied as an image."
    elif unit.is_first:
        scope = f"This is part {unit.ordinal} of the document (the beginning)."
    else:
        scope = (
            f"This is part {unit.ordinal} of the document. It may start mid-question; "
            "skip a leading fragment that has no question stem."
        )
    return f"{_BASE_INSTRUCTIONS}\n\n{scope}"


@dataclass(slots=True)
class UnitOutcome:
    unit: int
    records: list[QuestionDraft] = field(default_factory=list)
    failed: bool = False
    error: str | None = None
    elapsed_seconds: float = 0.0


class ExtractionWorker:
    """One oracle call per unit, piped through the normalizer. Never raises for oracle trouble."""

    def __init__(
        self,
        oracle: Oracle,
        normalizer: ResponseNormalizer | None = None,
        *,
        timeout_seconds: float = 120.0,
    ) -> None:
        self.oracle = oracle
        self.normalizer = normalizer or ResponseNormalizer()
        self.timeout_seconds = max(0.01, float(timeout_seconds))

    def process(self, unit: WorkUnit) -> UnitOutcome:
        started = time.monotonic()
        instructions = build_instructions(unit)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"oracle-unit-{unit.ordinal}")
        try:
            future = executor.submit(self.oracle.generate, unit.content, instructions)
            raw = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            logger.warning("Oracle call for unit %d timed out after %.1fs", unit.ordinal, self.timeout_seconds)
            return self._failed(unit, started, f"timeout after {self.timeout_seconds:.1f}s")
        except OracleError as exc:
            logger.warning("Oracle call for unit %d failed: %s", unit.ordinal, exc)
            return self._failed(unit, started, str(exc))
        except Exception as exc:
            logger.warning("Unexpected oracle failure for unit %d: %s", unit.ordinal, exc, exc_info=True)
            return self._failed(unit, started, f"{type(exc).__name__}: {exc}")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        records = self.normalizer.normalize(raw)
        elapsed = time.monotonic() - started
        if not records:
            logger.warning("Unit %d yielded no usable questions", unit.ordinal)
            return UnitOutcome(unit=unit.ordinal, failed=True, error="no questions extracted", elapsed_seconds=elapsed)

        logger.info("Unit %d yielded %d questions in %.2fs", unit.ordinal, len(records), elapsed)
        return UnitOutcome(unit=unit.ordinal, records=records, elapsed_seconds=elapsed)

    @staticmethod
    def _failed(unit: WorkUnit, started: float, error: str) -> UnitOutcome:
        return UnitOutcome(
            unit=unit.ordinal,
            failed=True,
            error=error,
            elapsed_seconds=time.monotonic() - started,
        )
