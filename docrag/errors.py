"""Exception hierarchy for the ingestion and retrieval pipeline.

    DocragError               (base)
    +-- SourceUnavailable         (content source cannot be enumerated)
    +-- ExtractionFailure         (document content cannot be turned into text/segments)
    +-- EmbeddingProviderFailure  (embedding call failed or returned bad vectors)
    +-- StoreFailure              (vector/document store rejected a read or write)
    +-- IngestionTimeout          (ingestion run exceeded its wall-clock budget)

Each error optionally carries the ``document_id`` and pipeline ``phase`` it
happened in, so log lines and CLI output can say where a run stopped.
"""
from typing import Optional


class DocragError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        document_id: Optional[str] = None,
        phase: Optional[str] = None,
    ):
        self.message = message
        self.document_id = document_id
        self.phase = phase
        super().__init__(message)

    def __str__(self) -> str:
        context = []
        if self.phase:
            context.append(f"phase={self.phase}")
        if self.document_id:
            context.append(f"document={self.document_id}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class SourceUnavailable(DocragError):
    """Raised when a content source cannot be listed (missing directory, bad credentials)."""


class ExtractionFailure(DocragError):
    """Raised when a document cannot be read or split into segments."""


class EmbeddingProviderFailure(DocragError):
    """Raised when the embedding provider fails or returns malformed vectors."""


class StoreFailure(DocragError):
    """Raised when the persistence layer rejects a read or write."""


class IngestionTimeout(DocragError):
    """Raised when an ingestion run exceeds its wall-clock timeout."""
