class QuizloomError(Exception):
    """Base error for all user-facing quizloom exceptions."""


class ConfigurationError(QuizloomError):
    """Raised when configuration is invalid or incomplete."""


class ProjectNotInitializedError(QuizloomError):
    """Raised when .quizloom metadata is missing."""


class ValidationError(QuizloomError):
    """Raised when model invariants fail."""


class PlanningError(QuizloomError):
    """Raised when source content cannot be split into work units."""


class StoreError(QuizloomError):
    """Raised when a document or question write fails."""


class DocumentNotFoundError(StoreError):
    """Raised when a mutation targets an unknown fingerprint."""


class DuplicateUnitError(StoreError):
    """Raised when questions for an already persisted unit are appended again."""


class NothingExtractedError(QuizloomError):
    """Raised when no unit of a document yielded any question."""

    def __init__(self, fingerprint: str, message: str | None = None) -> None:
        self.fingerprint = fingerprint
        super().__init__(
            message
            or f"No questions could be extracted from document {fingerprint[:12]}."
        )


class OracleError(QuizloomError):
    """Raised when the generative-text service call fails."""


class TransferError(QuizloomError):
    """Raised when an export/import bundle is malformed."""


class SessionError(QuizloomError):
    """Raised when quiz session operations fail."""
