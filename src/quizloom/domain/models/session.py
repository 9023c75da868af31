from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class QuizSession:
    id: str
    fingerprint: str
    started_at: str
    ended_at: str | None = None
    current_question: int = 0
    answers: dict[int, int] = field(default_factory=dict)
    flagged: list[int] = field(default_factory=list)
    is_complete: bool = False
    score: float | None = None
    time_spent_seconds: int = 0
