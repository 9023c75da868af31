from __future__ import annotations

from quizloom.core.errors import DocumentNotFoundError, ValidationError
from quizloom.infrastructure.db.repos.document_repo import DocumentRepo

MIN_PREFIX_LENGTH = 6


def resolve_fingerprint(repo: DocumentRepo, value: str) -> str:
    """Expand a fingerprint prefix (as printed by ``docs list``) to the full digest."""
    value = value.strip().lower()
    if len(value) == 64:
        return value
    if len(value) < MIN_PREFIX_LENGTH:
        raise ValidationError(f"Fingerprint prefix must be at least {MIN_PREFIX_LENGTH} characters.")
    matches = repo.fingerprints_with_prefix(value)
    if not matches:
        raise DocumentNotFoundError(f"No document matches fingerprint prefix {value!r}.")
    if len(matches) > 1:
        raise ValidationError(f"Fingerprint prefix {value!r} is ambiguous ({len(matches)} matches).")
    return matches[0]
