from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from quizloom.application.services.background_scheduler import BackgroundScheduler
from quizloom.application.services.chunk_planner import ChunkPlanner
from quizloom.application.services.extraction_worker import ExtractionWorker
from quizloom.application.services.response_normalizer import ResponseNormalizer
from quizloom.core.config import PipelineSettings
from quizloom.core.errors import DocumentNotFoundError, NothingExtractedError, PlanningError, ValidationError
from quizloom.core.events import (
    CACHE_HIT,
    FIRST_BATCH_READY,
    CacheHit,
    EventEmitter,
    FirstBatchReady,
)
from quizloom.core.hashing import fingerprint_pages, fingerprint_text, normalize_text
from quizloom.core.time import now_utc_iso
from quizloom.domain.models.document import (
    CONTENT_IMAGES,
    CONTENT_TEXT,
    STATUS_PROCESSING,
    Document,
)
from quizloom.domain.models.question import Question
from quizloom.infrastructure.db.repos.document_repo import DocumentRepo
from quizloom.infrastructure.oracle.base import Oracle

logger = logging.getLogger(__name__)

STATE_CACHED = "cached"
STATE_PROCESSING = "processing"
STATE_COMPLETE = "complete"
STATE_CANCELLED = "cancelled"


@dataclass(slots=True)
class SubmitResult:
    fingerprint: str
    questions: list[Question]
    from_cache: bool
    state: str
    planned_units: int
    completed_units: int


@dataclass(slots=True)
class _Source:
    fingerprint: str
    content: str | list[bytes]
    content_kind: str
    name: str
    size_bytes: int
    raw_content: str | None


class PipelineService:
    """Entry point: cache lookup, planning, synchronous first batch, background remainder."""

    def __init__(
        self,
        *,
        store: DocumentRepo,
        planner: ChunkPlanner,
        worker: ExtractionWorker,
        scheduler: BackgroundScheduler,
        background_enabled: bool = True,
    ) -> None:
        self.store = store
        self.planner = planner
        self.worker = worker
        self.scheduler = scheduler
        self.background_enabled = background_enabled

    @classmethod
    def build(
        cls,
        db_path: Path,
        *,
        oracle: Oracle,
        settings: PipelineSettings | None = None,
        background_enabled: bool = True,
    ) -> "PipelineService":
        settings = settings or PipelineSettings()
        store = DocumentRepo(db_path)
        worker = ExtractionWorker(oracle, ResponseNormalizer(), timeout_seconds=settings.oracle_timeout_seconds)
        scheduler = BackgroundScheduler(
            store=store,
            worker=worker,
            rate_limit_seconds=settings.rate_limit_seconds,
        )
        return cls(
            store=store,
            planner=ChunkPlanner.from_settings(settings),
            worker=worker,
            scheduler=scheduler,
            background_enabled=background_enabled,
        )

    @property
    def events(self) -> EventEmitter:
        return self.scheduler.events

    def submit(
        self,
        content: str | list[bytes],
        name: str | None = None,
        size_bytes: int | None = None,
    ) -> SubmitResult:
        source = self._prepare_source(content, name=name, size_bytes=size_bytes)
        fingerprint = source.fingerprint

        existing = self.store.lookup(fingerprint)
        if existing is not None and existing.is_complete and existing.total_questions == 0:
            logger.info("Retrying %s: previous run completed with no questions", fingerprint[:12])
            self.store.delete_document(fingerprint)
            existing = None

        if existing is not None and existing.is_complete:
            questions = self.store.list_questions(fingerprint)
            self.events.emit(CACHE_HIT, CacheHit(fingerprint=fingerprint, total_questions=len(questions)))
            return SubmitResult(
                fingerprint=fingerprint,
                questions=questions,
                from_cache=True,
                state=STATE_CACHED,
                planned_units=existing.planned_units,
                completed_units=existing.completed_units,
            )

        if existing is not None and self.scheduler.is_draining(fingerprint):
            return self._snapshot(fingerprint, STATE_PROCESSING)

        units = self.planner.plan(source.content)
        now = now_utc_iso()
        self.store.upsert_document(
            Document(
                fingerprint=fingerprint,
                name=source.name,
                size_bytes=source.size_bytes,
                content_kind=source.content_kind,
                raw_content=source.raw_content,
                total_questions=0,
                status=STATUS_PROCESSING,
                planned_units=len(units),
                completed_units=0,
                created_at=now,
                last_accessed_at=now,
            )
        )

        resume_from = existing.completed_units if existing is not None else 0
        persisted = set(self.store.persisted_units(fingerprint))
        remaining = [u for u in units if u.ordinal > resume_from and u.ordinal not in persisted]
        if existing is not None:
            logger.info(
                "Resuming %s from unit %d (%d units left)", fingerprint[:12], resume_from + 1, len(remaining)
            )

        limiter, token = self.scheduler.prepare(fingerprint)
        first_batch: list[Question] = []
        first_unit = 0
        while remaining and not token.cancelled:
            unit = remaining.pop(0)
            if not limiter.acquire(token):
                break
            outcome = self.worker.process(unit)
            if token.cancelled:
                break
            stored = self.scheduler.record_outcome(fingerprint, unit, outcome, complete_on_last=False)
            if stored:
                first_batch = stored
                first_unit = unit.ordinal
                break

        if token.cancelled:
            return self._snapshot(fingerprint, STATE_CANCELLED)

        if first_batch:
            document = self.store.lookup(fingerprint, touch=False)
            self.events.emit(
                FIRST_BATCH_READY,
                FirstBatchReady(
                    fingerprint=fingerprint,
                    unit=first_unit,
                    new_questions=len(first_batch),
                    planned_units=document.planned_units if document else len(units),
                    completed_units=document.completed_units if document else first_unit,
                ),
            )

        if remaining:
            self.scheduler.enqueue(fingerprint, remaining)
            if self.background_enabled:
                return self._snapshot(fingerprint, STATE_PROCESSING)
            self.scheduler.wait(fingerprint)

        self.scheduler.verify_completion(fingerprint)
        if self.store.count_questions(fingerprint) == 0:
            raise NothingExtractedError(fingerprint)
        document = self.store.lookup(fingerprint, touch=False)
        state = STATE_COMPLETE if document is not None and document.is_complete else STATE_PROCESSING
        return self._snapshot(fingerprint, state)

    def status(self, fingerprint: str) -> SubmitResult:
        document = self.store.lookup(fingerprint, touch=False)
        if document is None:
            raise DocumentNotFoundError(f"Document not found: {fingerprint}")
        return self._snapshot(fingerprint, STATE_COMPLETE if document.is_complete else STATE_PROCESSING)

    def cancel(self, fingerprint: str, reason: str = "user_cancelled") -> bool:
        return self.scheduler.cancel(fingerprint, reason)

    def wait(self, fingerprint: str, timeout: float | None = None) -> bool:
        return self.scheduler.wait(fingerprint, timeout)

    def shutdown(self) -> None:
        self.scheduler.shutdown()

    def _snapshot(self, fingerprint: str, state: str) -> SubmitResult:
        document = self.store.lookup(fingerprint, touch=False)
        return SubmitResult(
            fingerprint=fingerprint,
            questions=self.store.list_questions(fingerprint),
            from_cache=False,
            state=state,
            planned_units=document.planned_units if document else 0,
            completed_units=document.completed_units if document else 0,
        )

    @staticmethod
    def _prepare_source(
        content: str | list[bytes],
        *,
        name: str | None,
        size_bytes: int | None,
    ) -> _Source:
        if name:
            name = normalize_text(name)
        if isinstance(content, str):
            text = normalize_text(content)
            if not text:
                raise PlanningError("Cannot submit empty text content.")
            encoded_size = len(text.encode("utf-8"))
            return _Source(
                fingerprint=fingerprint_text(text),
                content=text,
                content_kind=CONTENT_TEXT,
                name=name or "untitled",
                size_bytes=size_bytes if size_bytes is not None else encoded_size,
                raw_content=text,
            )

        if not isinstance(content, list):
            raise ValidationError("Content must be text or a list of page images.")
        if not name:
            raise ValidationError("Page-image submissions need a document name.")
        total = size_bytes if size_bytes is not None else sum(len(page) for page in content)
        return _Source(
            fingerprint=fingerprint_pages(name, total),
            content=content,
            content_kind=CONTENT_IMAGES,
            name=name,
            size_bytes=total,
            raw_content=None,
        )
