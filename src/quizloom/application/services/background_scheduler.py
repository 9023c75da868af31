from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from quizloom.application.services.extraction_worker import ExtractionWorker, UnitOutcome
from quizloom.core.cancellation import CancellationToken
from quizloom.core.errors import DocumentNotFoundError, DuplicateUnitError, StoreError
from quizloom.core.events import (
    PROCESSING_CANCELLED,
    PROCESSING_COMPLETE,
    UNIT_COMPLETED,
    EventEmitter,
    ProcessingCancelled,
    ProcessingComplete,
    UnitCompleted,
)
from quizloom.domain.models.question import Question
from quizloom.domain.models.work_unit import WorkUnit
from quizloom.infrastructure.db.repos.document_repo import DocumentRepo

logger = logging.getLogger(__name__)


class RateLimiter:
    """Enforce a minimum spacing between the starts of consecutive oracle calls."""

    def __init__(self, min_interval_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.min_interval_seconds = max(0.0, float(min_interval_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._last_call: float | None = None

    @property
    def last_call(self) -> float | None:
        return self._last_call

    def acquire(self, token: CancellationToken | None = None) -> bool:
        """Block until a call may start. Returns False if cancelled while waiting."""
        with self._lock:
            if self._last_call is not None:
                remaining = self.min_interval_seconds - (self._clock() - self._last_call)
                if remaining > 0:
                    logger.debug("Rate limit: waiting %.2fs", remaining)
                    if token is None:
                        time.sleep(remaining)
                    elif token.wait(remaining):
                        return False
            if token is not None and token.cancelled:
                return False
            self._last_call = self._clock()
            return True


@dataclass(slots=True)
class _DocumentQueue:
    fingerprint: str
    limiter: RateLimiter
    token: CancellationToken = field(default_factory=CancellationToken)
    pending: list[WorkUnit] = field(default_factory=list)
    processed: set[int] = field(default_factory=set)
    draining: bool = False
    cancel_emitted: bool = False
    had_errors: bool = False
    thread: threading.Thread | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)
    idle: threading.Event = field(default_factory=threading.Event)


class BackgroundScheduler:
    """Per-document single-flight drain loops over pending work units.

    Units of one document are processed strictly in ordinal order, one oracle call at
    a time, spaced by that document's rate limiter. Different documents drain
    independently and share nothing but the store.
    """

    def __init__(
        self,
        *,
        store: DocumentRepo,
        worker: ExtractionWorker,
        rate_limit_seconds: float = 5.0,
        events: EventEmitter | None = None,
    ) -> None:
        self.store = store
        self.worker = worker
        self.rate_limit_seconds = rate_limit_seconds
        self.events = events or EventEmitter()
        self._registry_lock = threading.Lock()
        self._queues: dict[str, _DocumentQueue] = {}
        self._stop = threading.Event()

    def prepare(self, fingerprint: str) -> tuple[RateLimiter, CancellationToken]:
        """Return the limiter and token a synchronous caller must share with the drain loop."""
        state = self._state(fingerprint)
        with state.lock:
            if state.token.cancelled and not state.draining:
                state.token = CancellationToken()
                state.cancel_emitted = False
            return state.limiter, state.token

    def rate_limiter(self, fingerprint: str) -> RateLimiter:
        return self._state(fingerprint).limiter

    def mark_processed(self, fingerprint: str, ordinal: int) -> None:
        state = self._state(fingerprint)
        with state.lock:
            state.processed.add(ordinal)

    def enqueue(self, fingerprint: str, units: list[WorkUnit]) -> bool:
        """Append units; start a drain loop only if none is running. Returns True if one started."""
        if self._stop.is_set():
            raise RuntimeError("Scheduler has been shut down.")
        state = self._state(fingerprint)
        with state.lock:
            if state.token.cancelled and not state.draining:
                state.token = CancellationToken()
                state.cancel_emitted = False
            known = {unit.ordinal for unit in state.pending} | state.processed
            for unit in units:
                if unit.ordinal not in known:
                    state.pending.append(unit)
                    known.add(unit.ordinal)
            state.pending.sort(key=lambda unit: unit.ordinal)
            if state.draining or not state.pending:
                return False
            state.draining = True
            state.idle.clear()
            thread = threading.Thread(
                target=self._drain,
                args=(state,),
                daemon=True,
                name=f"drain-{fingerprint[:12]}",
            )
            state.thread = thread
            pending_count = len(state.pending)
        logger.info("Starting drain loop for %s (%d pending units)", fingerprint[:12], pending_count)
        thread.start()
        return True

    def is_draining(self, fingerprint: str) -> bool:
        with self._registry_lock:
            state = self._queues.get(fingerprint)
        if state is None:
            return False
        with state.lock:
            return state.draining

    def pending_ordinals(self, fingerprint: str) -> list[int]:
        with self._registry_lock:
            state = self._queues.get(fingerprint)
        if state is None:
            return []
        with state.lock:
            return [unit.ordinal for unit in state.pending]

    def cancel(self, fingerprint: str, reason: str = "user_cancelled") -> bool:
        with self._registry_lock:
            state = self._queues.get(fingerprint)
        if state is None:
            return False
        state.token.cancel(reason)
        with state.lock:
            state.pending.clear()
            was_draining = state.draining
            emit_now = not was_draining and not state.cancel_emitted
        if emit_now:
            document = self.store.lookup(fingerprint, touch=False)
            emit_now = document is not None and not document.is_complete
            if emit_now:
                with state.lock:
                    state.cancel_emitted = True
        logger.info("Cancellation requested for %s (%s)", fingerprint[:12], reason)
        if emit_now:
            self.events.emit(
                PROCESSING_CANCELLED,
                ProcessingCancelled(fingerprint=fingerprint, reason=state.token.reason or reason),
            )
        return was_draining

    def wait(self, fingerprint: str, timeout: float | None = None) -> bool:
        """Wait for the drain loop of ``fingerprint`` to go idle; True if it did."""
        with self._registry_lock:
            state = self._queues.get(fingerprint)
        if state is None:
            return True
        return state.idle.wait(timeout)

    def shutdown(self, timeout: float = 2.0) -> None:
        self._stop.set()
        with self._registry_lock:
            states = list(self._queues.values())
        for state in states:
            state.token.cancel("shutdown")
        for state in states:
            thread = state.thread
            if thread is not None and thread.is_alive():
                thread.join(timeout=timeout)

    def complete(self, fingerprint: str) -> bool:
        """Idempotently mark a document complete; emits ``processing_complete`` only on transition."""
        with self._registry_lock:
            state = self._queues.get(fingerprint)
        unrecorded_errors = state is not None and state.had_errors
        if not self.store.mark_complete(fingerprint, had_errors=unrecorded_errors):
            return False
        document = self.store.lookup(fingerprint, touch=False)
        if document is None:
            return False
        had_errors = document.failed_units > 0 or document.had_errors or unrecorded_errors
        logger.info(
            "Document %s complete: %d questions%s",
            fingerprint[:12],
            document.total_questions,
            " (with errors)" if had_errors else "",
        )
        self.events.emit(
            PROCESSING_COMPLETE,
            ProcessingComplete(
                fingerprint=fingerprint,
                total_questions=document.total_questions,
                had_errors=had_errors,
                nothing_extracted=document.total_questions == 0,
            ),
        )
        return True

    def verify_completion(self, fingerprint: str) -> bool:
        """Recompute completion from persisted state rather than trusting the unit counter."""
        document = self.store.lookup(fingerprint, touch=False)
        if document is None or document.is_complete:
            return False
        with self._registry_lock:
            state = self._queues.get(fingerprint)
        processed = 0
        if state is not None:
            with state.lock:
                processed = max(state.processed, default=0)
        persisted = max(self.store.persisted_units(fingerprint), default=0)
        effective = max(document.completed_units, persisted, processed)
        if effective >= document.planned_units:
            return self.complete(fingerprint)
        logger.warning(
            "Document %s drained with %d/%d units accounted for",
            fingerprint[:12],
            effective,
            document.planned_units,
        )
        return False

    def _state(self, fingerprint: str) -> _DocumentQueue:
        with self._registry_lock:
            state = self._queues.get(fingerprint)
            if state is None:
                state = _DocumentQueue(
                    fingerprint=fingerprint,
                    limiter=RateLimiter(self.rate_limit_seconds),
                )
                state.idle.set()
                self._queues[fingerprint] = state
            return state

    def _drain(self, state: _DocumentQueue) -> None:
        try:
            while True:
                while True:
                    with state.lock:
                        if state.token.cancelled or not state.pending:
                            break
                        unit = state.pending.pop(0)
                    self._run_unit(state, unit)
                self._finish_pass(state)
                with state.lock:
                    if state.pending and not state.token.cancelled:
                        continue
                    # Exit decision and idle transition happen under one lock hold.
                    self._go_idle(state)
                    return
        except Exception:
            logger.exception("Drain loop for %s crashed", state.fingerprint[:12])
            with state.lock:
                self._go_idle(state)

    @staticmethod
    def _go_idle(state: _DocumentQueue) -> None:
        if state.token.cancelled:
            state.pending.clear()
        state.draining = False
        state.idle.set()

    def record_outcome(
        self,
        fingerprint: str,
        unit: WorkUnit,
        outcome: UnitOutcome,
        *,
        complete_on_last: bool = True,
    ) -> list[Question]:
        """Persist one unit's records, advance progress and emit ``unit_completed``.

        Shared by the drain loop and the orchestrator's synchronous path. Raises
        ``DocumentNotFoundError`` if the document vanished.
        """
        failed = outcome.failed
        stored: list[Question] = []
        if outcome.records:
            try:
                stored = self.store.append_questions(fingerprint, unit.ordinal, outcome.records)
            except DuplicateUnitError:
                logger.warning("Unit %d of %s was already persisted", unit.ordinal, fingerprint[:12])
            except DocumentNotFoundError:
                raise
            except StoreError:
                logger.exception("Failed to persist unit %d of %s", unit.ordinal, fingerprint[:12])
                failed = True

        document = self.store.record_unit_progress(fingerprint, unit.ordinal, failed=failed)
        self.mark_processed(fingerprint, unit.ordinal)

        self.events.emit(
            UNIT_COMPLETED,
            UnitCompleted(
                fingerprint=fingerprint,
                unit=unit.ordinal,
                new_questions=len(stored),
                total_questions=document.total_questions,
                completed_units=document.completed_units,
                planned_units=document.planned_units,
                failed=failed,
            ),
        )
        if complete_on_last and unit.ordinal >= document.planned_units:
            self.complete(fingerprint)
        return stored

    def _run_unit(self, state: _DocumentQueue, unit: WorkUnit) -> None:
        fingerprint = state.fingerprint
        if not state.limiter.acquire(state.token):
            return
        outcome = self.worker.process(unit)
        if state.token.cancelled:
            logger.info("Discarding unit %d of %s after cancellation", unit.ordinal, fingerprint[:12])
            return
        try:
            self.record_outcome(fingerprint, unit, outcome)
        except DocumentNotFoundError:
            logger.error("Document %s disappeared while draining; stopping", fingerprint[:12])
            state.token.cancel("document_deleted")
        except StoreError:
            logger.exception("Failed to record unit %d of %s; continuing", unit.ordinal, fingerprint[:12])
            with state.lock:
                state.had_errors = True
                state.processed.add(unit.ordinal)

    def _finish_pass(self, state: _DocumentQueue) -> None:
        if state.token.cancelled:
            with state.lock:
                state.pending.clear()
                should_emit = not state.cancel_emitted
                state.cancel_emitted = True
            if should_emit:
                self.events.emit(
                    PROCESSING_CANCELLED,
                    ProcessingCancelled(
                        fingerprint=state.fingerprint,
                        reason=state.token.reason or "cancelled",
                    ),
                )
            return
        self.verify_completion(state.fingerprint)
