from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class WorkUnit:
    ordinal: int
    content: str | bytes
    is_first: bool
    start_offset: int | None = None
    end_offset: int | None = None
    word_count: int = 0

    @property
    def is_image(self) -> bool:
        return isinstance(self.content, bytes)
