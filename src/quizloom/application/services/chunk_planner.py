from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

from quizloom.core.config import PipelineSettings
from quizloom.core.errors import PlanningError
from quizloom.domain.models.work_unit import WorkUnit

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\S+")
_NUMBERED_LINE_RE = re.compile(r"^\s*\d{1,3}\s*[.)]\s+\S", re.MULTILINE)
_QUESTION_MARKER_RE = re.compile(r"\bQuestion\s+\d+", re.IGNORECASE)
_OPTION_MARKER_RE = re.compile(r"^\s*(?:\([A-Ea-e]\)|[A-Ea-e][.)])\s+\S", re.MULTILINE)

OPTIONS_PER_QUESTION = 4


@dataclass(slots=True)
class DensityEstimate:
    numbered_lines: int
    question_markers: int
    option_groups: int
    estimate: int


class ChunkPlanner:
    """Split document content into ordered work units sized by estimated question density."""

    def __init__(
        self,
        *,
        questions_per_unit: int = 20,
        max_units: int = 5,
        min_units: int = 2,
        small_document_chars: int = 25_000,
        low_question_threshold: int = 20,
        min_estimate: int = 10,
        max_estimate: int = 150,
        merge_ratio: float = 0.3,
    ) -> None:
        self.questions_per_unit = max(1, questions_per_unit)
        self.max_units = max(1, max_units)
        self.min_units = max(1, min(min_units, self.max_units))
        self.small_document_chars = max(0, small_document_chars)
        self.low_question_threshold = max(0, low_question_threshold)
        self.min_estimate = max(0, min_estimate)
        self.max_estimate = max(self.min_estimate, max_estimate)
        self.merge_ratio = min(max(merge_ratio, 0.0), 1.0)

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "ChunkPlanner":
        return cls(
            questions_per_unit=settings.questions_per_unit,
            max_units=settings.max_units,
            small_document_chars=settings.small_document_chars,
            low_question_threshold=settings.low_question_threshold,
        )

    def plan(self, content: str | list[bytes]) -> list[WorkUnit]:
        if isinstance(content, str):
            return self.plan_text(content)
        return self.plan_images(content)

    def estimate_density(self, text: str) -> DensityEstimate:
        numbered = len(_NUMBERED_LINE_RE.findall(text))
        markers = len(_QUESTION_MARKER_RE.findall(text))
        option_groups = len(_OPTION_MARKER_RE.findall(text)) // OPTIONS_PER_QUESTION
        raw = max(numbered, markers, option_groups)
        return DensityEstimate(
            numbered_lines=numbered,
            question_markers=markers,
            option_groups=option_groups,
            estimate=min(self.max_estimate, max(self.min_estimate, raw)),
        )

    def plan_text(self, text: str) -> list[WorkUnit]:
        if not text or not text.strip():
            raise PlanningError("Cannot plan extraction for empty content.")

        density = self.estimate_density(text)
        words = list(_WORD_RE.finditer(text))

        if len(text) < self.small_document_chars and density.estimate <= self.low_question_threshold:
            logger.debug(
                "Single-unit plan: %d chars, estimated %d questions", len(text), density.estimate
            )
            return [self._single_unit(text, len(words))]

        unit_count = math.ceil(density.estimate / self.questions_per_unit)
        unit_count = min(self.max_units, max(self.min_units, unit_count))
        unit_count = min(unit_count, len(words))
        if unit_count <= 1:
            return [self._single_unit(text, len(words))]

        words_per_unit = len(words) // unit_count
        bounds: list[tuple[int, int]] = []
        for index in range(unit_count):
            first_word = index * words_per_unit
            last_word = len(words) if index == unit_count - 1 else (index + 1) * words_per_unit
            bounds.append((first_word, last_word))
        bounds = self._merge_undersized(bounds, words_per_unit)

        units: list[WorkUnit] = []
        for index, (first_word, last_word) in enumerate(bounds):
            start = 0 if index == 0 else words[first_word].start()
            end = len(text) if index == len(bounds) - 1 else words[last_word].start()
            units.append(
                WorkUnit(
                    ordinal=index + 1,
                    content=text[start:end],
                    is_first=index == 0,
                    start_offset=start,
                    end_offset=end,
                    word_count=last_word - first_word,
                )
            )

        logger.info(
            "Planned %d units for %d chars (estimated %d questions)",
            len(units),
            len(text),
            density.estimate,
        )
        return units

    def plan_images(self, pages: list[bytes]) -> list[WorkUnit]:
        if not pages:
            raise PlanningError("Cannot plan extraction for an empty page sequence.")
        units: list[WorkUnit] = []
        for index, page in enumerate(pages):
            if not isinstance(page, (bytes, bytearray)) or not page:
                raise PlanningError(f"Page {index + 1} is empty or not image data.")
            units.append(WorkUnit(ordinal=index + 1, content=bytes(page), is_first=index == 0))
        return units

    def _merge_undersized(self, bounds: list[tuple[int, int]], target_words: int) -> list[tuple[int, int]]:
        threshold = target_words * self.merge_ratio
        merged: list[tuple[int, int]] = []
        for first_word, last_word in bounds:
            if merged and (last_word - first_word) < threshold:
                prev_first, _ = merged[-1]
                merged[-1] = (prev_first, last_word)
                continue
            merged.append((first_word, last_word))
        return merged

    @staticmethod
    def _single_unit(text: str, word_count: int) -> WorkUnit:
        return WorkUnit(
            ordinal=1,
            content=text,
            is_first=True,
            start_offset=0,
            end_offset=len(text),
            word_count=word_count,
        )
