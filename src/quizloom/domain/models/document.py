from __future__ import annotations

from dataclasses import dataclass

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETE = "complete"

CONTENT_TEXT = "text"
CONTENT_IMAGES = "images"


@dataclass(slots=True)
class Document:
    fingerprint: str
    name: str
    size_bytes: int
    content_kind: str
    raw_content: str | None
    total_questions: int
    status: str
    planned_units: int
    completed_units: int
    created_at: str
    last_accessed_at: str
    failed_units: int = 0
    had_errors: bool = False
    completed_at: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.status == STATUS_COMPLETE
