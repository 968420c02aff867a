"""Typed errors shared across the knowledge-base services.

Every error carries an HTTP-ish ``status_code`` so routers can translate
them into JSON responses without a lookup table, and an optional ``cause``
for phase-level faults that wrap a lower-level exception.
"""
from typing import Optional


class KnowledgeBaseError(Exception):
    """Base class for all knowledge-base errors."""

    status_code: int = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


# ---------------------------------------------------------------------------
# Validation / lookup
# ---------------------------------------------------------------------------

class InvalidInputError(KnowledgeBaseError):
    """Rejected before any I/O: bad name, path traversal, empty query."""

    status_code = 400


class CollectionNotFoundError(KnowledgeBaseError):
    status_code = 404

    def __init__(self, name: str) -> None:
        super().__init__(f"Knowledge base '{name}' does not exist")
        self.name = name


class CollectionExistsError(KnowledgeBaseError):
    status_code = 409

    def __init__(self, name: str) -> None:
        super().__init__(f"Knowledge base '{name}' already exists")
        self.name = name


# ---------------------------------------------------------------------------
# Runtime failures
# ---------------------------------------------------------------------------

class EmbeddingNotReadyError(KnowledgeBaseError):
    """The embedding backend was used before ``initialize()`` succeeded."""

    status_code = 503


class StorageError(KnowledgeBaseError):
    status_code = 500


class ScanError(KnowledgeBaseError):
    status_code = 500


class DocumentConversionError(KnowledgeBaseError):
    status_code = 422


class DocumentConversionTimeout(DocumentConversionError):
    """Conversion exceeded its timeout and the process group was killed."""


class IngestionError(KnowledgeBaseError):
    """Phase-level fault that aborted an ingestion run."""

    status_code = 500

    def __init__(
        self,
        message: str,
        phase: str = "",
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.phase = phase


class SearchError(KnowledgeBaseError):
    status_code = 500
