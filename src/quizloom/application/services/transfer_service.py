from __future__ import annotations

import logging
import re
from typing import Any

from quizloom.core.errors import DocumentNotFoundError, TransferError
from quizloom.core.time import now_utc_iso
from quizloom.domain.models.document import CONTENT_IMAGES, CONTENT_TEXT, STATUS_COMPLETE, Document
from quizloom.domain.models.question import MAX_OPTIONS, MIN_OPTIONS, PROVENANCES, Question
from quizloom.infrastructure.db.repos.document_repo import DocumentRepo

logger = logging.getLogger(__name__)

BUNDLE_FORMAT = "quizloom-transfer"
BUNDLE_VERSION = 1
DEFAULT_PAGE_SIZE = 20

_FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")


class TransferService:
    """Share extracted questions between instances without the raw document content."""

    def __init__(self, store: DocumentRepo) -> None:
        self.store = store

    def export_metadata(self, fingerprint: str) -> dict[str, Any]:
        metadata = self.store.metadata_view(fingerprint)
        if metadata is None:
            raise DocumentNotFoundError(f"Document not found: {fingerprint}")
        return metadata

    def export_question_pages(self, fingerprint: str, page_size: int = DEFAULT_PAGE_SIZE) -> list[list[dict[str, Any]]]:
        if page_size <= 0:
            raise TransferError("page_size must be positive.")
        self.export_metadata(fingerprint)
        questions = [self._question_payload(q) for q in self.store.list_questions(fingerprint)]
        return [questions[i : i + page_size] for i in range(0, len(questions), page_size)]

    def export_page(self, fingerprint: str, page: int, page_size: int = DEFAULT_PAGE_SIZE) -> list[dict[str, Any]]:
        if page < 0:
            raise TransferError("page must be >= 0.")
        self.export_metadata(fingerprint)
        questions = self.store.list_questions(fingerprint, offset=page * page_size, limit=page_size)
        return [self._question_payload(q) for q in questions]

    def export_bundle(self, fingerprint: str) -> dict[str, Any]:
        metadata = self.export_metadata(fingerprint)
        questions = [self._question_payload(q) for q in self.store.list_questions(fingerprint)]
        return {
            "format": BUNDLE_FORMAT,
            "version": BUNDLE_VERSION,
            "metadata": metadata,
            "questions": questions,
        }

    def import_bundle(self, bundle: Any) -> int:
        """Import a bundle; returns how many questions were new. Safe to repeat."""
        if not isinstance(bundle, dict):
            raise TransferError("Transfer bundle must be a JSON object.")
        fmt = bundle.get("format", BUNDLE_FORMAT)
        if fmt != BUNDLE_FORMAT:
            raise TransferError(f"Unsupported bundle format: {fmt!r}")

        metadata = bundle.get("metadata")
        raw_questions = bundle.get("questions")
        if not isinstance(metadata, dict):
            raise TransferError("Transfer bundle is missing 'metadata'.")
        if not isinstance(raw_questions, list):
            raise TransferError("Transfer bundle is missing 'questions'.")

        document = self._document_from_metadata(metadata)
        questions = [self._question_from_payload(document.fingerprint, item, i) for i, item in enumerate(raw_questions)]
        inserted = self.store.import_document(document, questions)
        logger.info(
            "Imported %s: %d of %d questions were new", document.fingerprint[:12], inserted, len(questions)
        )
        return inserted

    @staticmethod
    def _question_payload(question: Question) -> dict[str, Any]:
        return {
            "ordinal": question.ordinal,
            "unit": question.unit,
            "prompt": question.prompt,
            "options": list(question.options),
            "correct_index": question.correct_index,
            "explanation": question.explanation,
            "provenance": question.provenance,
            "created_at": question.created_at,
        }

    @staticmethod
    def _document_from_metadata(metadata: dict[str, Any]) -> Document:
        fingerprint = str(metadata.get("fingerprint") or "").strip().lower()
        if not _FINGERPRINT_RE.match(fingerprint):
            raise TransferError("Bundle metadata has an invalid fingerprint.")
        name = str(metadata.get("name") or "").strip()
        if not name:
            raise TransferError("Bundle metadata is missing a document name.")
        content_kind = metadata.get("content_kind", CONTENT_TEXT)
        if content_kind not in (CONTENT_TEXT, CONTENT_IMAGES):
            raise TransferError(f"Unsupported content kind: {content_kind!r}")
        try:
            planned = max(1, int(metadata.get("planned_units") or 1))
            size_bytes = max(0, int(metadata.get("size_bytes") or 0))
            failed_units = max(0, int(metadata.get("failed_units") or 0))
        except (TypeError, ValueError) as exc:
            raise TransferError(f"Bundle metadata has a non-numeric field: {exc}") from exc

        now = now_utc_iso()
        return Document(
            fingerprint=fingerprint,
            name=name,
            size_bytes=size_bytes,
            content_kind=content_kind,
            raw_content=None,
            total_questions=0,
            status=STATUS_COMPLETE,
            planned_units=planned,
            completed_units=planned,
            created_at=str(metadata.get("created_at") or now),
            last_accessed_at=now,
            failed_units=failed_units,
            had_errors=bool(metadata.get("had_errors", False)),
            completed_at=str(metadata.get("completed_at") or now),
        )

    @staticmethod
    def _question_from_payload(fingerprint: str, item: Any, position: int) -> Question:
        if not isinstance(item, dict):
            raise TransferError(f"Question #{position} is not an object.")
        try:
            ordinal = int(item["ordinal"])
            unit = int(item.get("unit", 1))
            correct_index = int(item["correct_index"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TransferError(f"Question #{position} has invalid numeric fields.") from exc

        prompt = item.get("prompt")
        options = item.get("options")
        if not isinstance(prompt, str) or not prompt.strip():
            raise TransferError(f"Question #{position} has no prompt.")
        if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
            raise TransferError(f"Question #{position} has invalid options.")
        if not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
            raise TransferError(f"Question #{position} must have {MIN_OPTIONS}-{MAX_OPTIONS} options.")
        if not 0 <= correct_index < len(options):
            raise TransferError(f"Question #{position} has an out-of-range correct index.")
        if ordinal < 1 or unit < 1:
            raise TransferError(f"Question #{position} has a non-positive ordinal or unit.")
        provenance = item.get("provenance", "ai")
        if provenance not in PROVENANCES:
            raise TransferError(f"Question #{position} has unknown provenance {provenance!r}.")

        return Question(
            fingerprint=fingerprint,
            ordinal=ordinal,
            unit=unit,
            prompt=prompt.strip(),
            options=list(options),
            correct_index=correct_index,
            explanation=str(item.get("explanation") or "No explanation provided."),
            provenance=provenance,
            created_at=str(item.get("created_at") or now_utc_iso()),
        )
