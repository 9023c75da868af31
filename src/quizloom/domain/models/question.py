from __future__ import annotations

from dataclasses import dataclass

PROVENANCE_AI = "ai"
PROVENANCE_REPAIRED = "repaired"
PROVENANCE_PLACEHOLDER = "placeholder"

PROVENANCES = (PROVENANCE_AI, PROVENANCE_REPAIRED, PROVENANCE_PLACEHOLDER)

MIN_OPTIONS = 4
MAX_OPTIONS = 5


@dataclass(slots=True)
class QuestionDraft:
    """A validated question that has not been assigned an ordinal yet."""

    prompt: str
    options: list[str]
    correct_index: int
    explanation: str
    provenance: str = PROVENANCE_AI


@dataclass(slots=True)
class Question:
    fingerprint: str
    ordinal: int
    unit: int
    prompt: str
    options: list[str]
    correct_index: int
    explanation: str
    provenance: str
    created_at: str
