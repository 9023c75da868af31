from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, is_dataclass
from typing import Any

from fastapi import Body, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from quizloom.application.services.health_service import HealthService
from quizloom.application.services.pipeline_service import PipelineService, SubmitResult
from quizloom.application.services.project_service import ProjectService
from quizloom.application.services.session_service import SessionService
from quizloom.application.services.transfer_service import DEFAULT_PAGE_SIZE, TransferService
from quizloom.core.config import AppPaths, PipelineSettings, env_bool
from quizloom.core.errors import (
    ConfigurationError,
    DocumentNotFoundError,
    NothingExtractedError,
    PlanningError,
    QuizloomError,
    SessionError,
    TransferError,
    ValidationError,
)
from quizloom.core.events import (
    CACHE_HIT,
    FIRST_BATCH_READY,
    PROCESSING_CANCELLED,
    PROCESSING_COMPLETE,
    UNIT_COMPLETED,
)
from quizloom.core.time import now_utc_iso
from quizloom.domain.models.question import Question
from quizloom.infrastructure.db.repos.document_repo import DocumentRepo
from quizloom.infrastructure.db.repos.session_repo import SessionRepo
from quizloom.infrastructure.oracle.base import Oracle
from quizloom.infrastructure.oracle.factory import build_oracle

logger = logging.getLogger(__name__)

_MAX_EVENTS_PER_DOCUMENT = 200
_TRACKED_EVENTS = (CACHE_HIT, FIRST_BATCH_READY, UNIT_COMPLETED, PROCESSING_COMPLETE, PROCESSING_CANCELLED)


class SubmitTextRequest(BaseModel):
    name: str
    text: str


class CancelRequest(BaseModel):
    reason: str = "user_cancelled"


class StartSessionRequest(BaseModel):
    fingerprint: str


class AnswerRequest(BaseModel):
    ordinal: int
    option_index: int


class FlagRequest(BaseModel):
    ordinal: int


def _jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return value


def _question_json(question: Question) -> dict[str, Any]:
    return {
        "ordinal": question.ordinal,
        "unit": question.unit,
        "question": question.prompt,
        "options": list(question.options),
        "correctAnswer": question.correct_index,
        "explanation": question.explanation,
        "provenance": question.provenance,
    }


def _submit_json(result: SubmitResult) -> dict[str, Any]:
    return {
        "fingerprint": result.fingerprint,
        "state": result.state,
        "from_cache": result.from_cache,
        "planned_units": result.planned_units,
        "completed_units": result.completed_units,
        "questions": [_question_json(q) for q in result.questions],
    }


def _http_error(exc: QuizloomError) -> HTTPException:
    if isinstance(exc, DocumentNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, NothingExtractedError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, (PlanningError, ValidationError, TransferError, SessionError)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def create_app(
    paths: AppPaths,
    *,
    oracle: Oracle | None = None,
    settings: PipelineSettings | None = None,
    offline: bool = False,
) -> FastAPI:
    app = FastAPI(title="Quizloom", version="0.1.0")
    settings = settings or PipelineSettings()
    background_enabled = env_bool("QUIZLOOM_BACKGROUND_EXTRACTION_ENABLED", True)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    project_service = ProjectService(paths)
    project_service.init_project()

    pipeline_lock = threading.Lock()
    pipeline_cache: PipelineService | None = None
    events_lock = threading.Lock()
    event_log: dict[str, deque[dict[str, Any]]] = {}

    def get_document_repo() -> DocumentRepo:
        return DocumentRepo(paths.db_path)

    def get_transfer_service() -> TransferService:
        return TransferService(get_document_repo())

    def get_session_service() -> SessionService:
        return SessionService(get_document_repo(), SessionRepo(paths.db_path))

    def record_event(name: str, payload: Any) -> None:
        entry = {"event": name, "at": now_utc_iso(), **asdict(payload)}
        with events_lock:
            log = event_log.setdefault(payload.fingerprint, deque(maxlen=_MAX_EVENTS_PER_DOCUMENT))
            log.append(entry)

    def get_pipeline() -> PipelineService:
        nonlocal pipeline_cache
        with pipeline_lock:
            if pipeline_cache is None:
                resolved = oracle if oracle is not None else build_oracle(settings, offline=offline)
                pipeline_cache = PipelineService.build(
                    paths.db_path,
                    oracle=resolved,
                    settings=settings,
                    background_enabled=background_enabled,
                )
                for name in _TRACKED_EVENTS:
                    pipeline_cache.events.on(name, lambda payload, name=name: record_event(name, payload))
            return pipeline_cache

    def submit(content: str, name: str) -> dict[str, Any]:
        try:
            result = get_pipeline().submit(content, name=name)
        except QuizloomError as exc:
            raise _http_error(exc) from exc
        return _submit_json(result)

    @app.on_event("shutdown")
    def _shutdown_pipeline() -> None:
        if pipeline_cache is not None:
            pipeline_cache.shutdown()

    @app.post("/api/init")
    def api_init() -> dict[str, Any]:
        result = project_service.init_project()
        return {
            "ok": True,
            "db_path": str(result.db_path),
            "paths_created": [str(p) for p in result.paths_created],
        }

    @app.post("/api/documents/text")
    def api_submit_text(req: SubmitTextRequest) -> dict[str, Any]:
        return submit(req.text, req.name)

    @app.post("/api/documents/upload")
    def api_submit_upload(file: UploadFile = File(...)) -> dict[str, Any]:
        raw = file.file.read()
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise HTTPException(status_code=400, detail="Uploaded file is not UTF-8 text.") from exc
        return submit(text, file.filename or "upload.txt")

    @app.get("/api/documents")
    def api_documents(limit: int = Query(default=100, ge=1, le=1000)) -> dict[str, Any]:
        documents = get_document_repo().list_documents(limit=limit)
        items = []
        for doc in documents:
            item = asdict(doc)
            item.pop("raw_content", None)
            items.append(item)
        return {"count": len(items), "documents": items}

    @app.get("/api/documents/{fingerprint}")
    def api_document(fingerprint: str) -> dict[str, Any]:
        repo = get_document_repo()
        metadata = repo.metadata_view(fingerprint)
        if metadata is None:
            raise HTTPException(status_code=404, detail=f"Document not found: {fingerprint}")
        draining = pipeline_cache is not None and pipeline_cache.scheduler.is_draining(fingerprint)
        return {
            "document": metadata,
            "persisted_units": repo.persisted_units(fingerprint),
            "draining": draining,
        }

    @app.get("/api/documents/{fingerprint}/questions")
    def api_document_questions(
        fingerprint: str,
        unit: int | None = Query(default=None, ge=1),
        offset: int = Query(default=0, ge=0),
        limit: int | None = Query(default=None, ge=1),
    ) -> dict[str, Any]:
        repo = get_document_repo()
        if repo.lookup(fingerprint, touch=False) is None:
            raise HTTPException(status_code=404, detail=f"Document not found: {fingerprint}")
        questions = repo.list_questions(fingerprint, unit=unit, offset=offset, limit=limit)
        return {"count": len(questions), "questions": [_question_json(q) for q in questions]}

    @app.get("/api/documents/{fingerprint}/events")
    def api_document_events(fingerprint: str) -> dict[str, Any]:
        with events_lock:
            events = list(event_log.get(fingerprint, ()))
        return {"fingerprint": fingerprint, "events": events}

    @app.post("/api/documents/{fingerprint}/cancel")
    def api_document_cancel(fingerprint: str, req: CancelRequest | None = Body(default=None)) -> dict[str, Any]:
        if get_document_repo().lookup(fingerprint, touch=False) is None:
            raise HTTPException(status_code=404, detail=f"Document not found: {fingerprint}")
        reason = req.reason if req is not None else "user_cancelled"
        was_draining = pipeline_cache.cancel(fingerprint, reason) if pipeline_cache is not None else False
        return {"ok": True, "was_draining": was_draining}

    @app.delete("/api/documents/{fingerprint}")
    def api_document_delete(fingerprint: str) -> dict[str, Any]:
        if pipeline_cache is not None:
            pipeline_cache.cancel(fingerprint, "document_deleted")
        if not get_document_repo().delete_document(fingerprint):
            raise HTTPException(status_code=404, detail=f"Document not found: {fingerprint}")
        with events_lock:
            event_log.pop(fingerprint, None)
        return {"ok": True, "deleted": fingerprint}

    @app.delete("/api/documents/{fingerprint}/answers")
    def api_document_clear_answers(fingerprint: str) -> dict[str, Any]:
        if get_document_repo().lookup(fingerprint, touch=False) is None:
            raise HTTPException(status_code=404, detail=f"Document not found: {fingerprint}")
        cleared = get_session_service().clear_answers(fingerprint)
        return {"ok": True, "sessions_cleared": cleared}

    @app.get("/api/transfer/{fingerprint}/metadata")
    def api_transfer_metadata(fingerprint: str) -> dict[str, Any]:
        try:
            metadata = get_transfer_service().export_metadata(fingerprint)
        except QuizloomError as exc:
            raise _http_error(exc) from exc
        return {"metadata": metadata}

    @app.get("/api/transfer/{fingerprint}/questions")
    def api_transfer_questions(
        fingerprint: str,
        page: int = Query(default=0, ge=0),
        page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=200),
    ) -> dict[str, Any]:
        try:
            questions = get_transfer_service().export_page(fingerprint, page, page_size)
        except QuizloomError as exc:
            raise _http_error(exc) from exc
        return {"page": page, "page_size": page_size, "questions": questions}

    @app.post("/api/transfer/import")
    def api_transfer_import(bundle: dict[str, Any] = Body(...)) -> dict[str, Any]:
        try:
            inserted = get_transfer_service().import_bundle(bundle)
        except QuizloomError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "inserted": inserted}

    @app.post("/api/sessions")
    def api_session_start(req: StartSessionRequest) -> dict[str, Any]:
        try:
            session = get_session_service().start(req.fingerprint)
        except QuizloomError as exc:
            raise _http_error(exc) from exc
        return {"session": _jsonable(session)}

    @app.post("/api/sessions/{session_id}/answers")
    def api_session_answer(session_id: str, req: AnswerRequest) -> dict[str, Any]:
        try:
            session = get_session_service().record_answer(session_id, req.ordinal, req.option_index)
        except QuizloomError as exc:
            raise _http_error(exc) from exc
        return {"session": _jsonable(session)}

    @app.post("/api/sessions/{session_id}/flags")
    def api_session_flag(session_id: str, req: FlagRequest) -> dict[str, Any]:
        try:
            session = get_session_service().toggle_flag(session_id, req.ordinal)
        except QuizloomError as exc:
            raise _http_error(exc) from exc
        return {"session": _jsonable(session)}

    @app.post("/api/sessions/{session_id}/finish")
    def api_session_finish(session_id: str) -> dict[str, Any]:
        try:
            report = get_session_service().finish(session_id)
        except QuizloomError as exc:
            raise _http_error(exc) from exc
        return {"score": _jsonable(report)}

    @app.get("/api/sessions/{session_id}/score")
    def api_session_score(session_id: str) -> dict[str, Any]:
        try:
            report = get_session_service().score(session_id)
        except QuizloomError as exc:
            raise _http_error(exc) from exc
        return {"score": _jsonable(report)}

    @app.get("/api/doctor")
    def api_doctor() -> dict[str, Any]:
        report = HealthService(paths.db_path).run_doctor()
        return {
            "ok": report.ok,
            "checks_run": report.checks_run,
            "db_runtime": _jsonable(report.db_runtime),
            "issues": [_jsonable(i) for i in report.issues],
        }

    return app
