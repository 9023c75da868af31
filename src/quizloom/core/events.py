from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

CACHE_HIT = "cache_hit"
FIRST_BATCH_READY = "first_batch_ready"
UNIT_COMPLETED = "unit_completed"
PROCESSING_COMPLETE = "processing_complete"
PROCESSING_CANCELLED = "processing_cancelled"


@dataclass(slots=True)
class CacheHit:
    fingerprint: str
    total_questions: int


@dataclass(slots=True)
class FirstBatchReady:
    fingerprint: str
    unit: int
    new_questions: int
    planned_units: int
    completed_units: int


@dataclass(slots=True)
class UnitCompleted:
    fingerprint: str
    unit: int
    new_questions: int
    total_questions: int
    completed_units: int
    planned_units: int
    failed: bool


@dataclass(slots=True)
class ProcessingComplete:
    fingerprint: str
    total_questions: int
    had_errors: bool
    nothing_extracted: bool


@dataclass(slots=True)
class ProcessingCancelled:
    fingerprint: str
    reason: str


class EventEmitter:
    """Observer registry owned by a single component instance."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Callable[[Any], None]]] = {}

    def on(self, event: str, callback: Callable[[Any], None]) -> None:
        with self._lock:
            self._subscribers.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable[[Any], None]) -> None:
        with self._lock:
            callbacks = self._subscribers.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def emit(self, event: str, payload: Any) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(event, []))
        for callback in callbacks:
            try:
                callback(payload)
            except Exception:
                logger.exception("Subscriber for %s failed", event)
