"""Error taxonomy shared by every core component.

The core never produces transport-specific codes. Callers (the CLI or an
HTTP layer) inspect the exception type and ``retryable`` to decide what to
report.
"""

from __future__ import annotations


class CodeSearchError(Exception):
    """Base class for all code-search errors."""

    retryable: bool = False


class EmbeddingUnavailable(CodeSearchError):
    """The embedding model is unreachable, timed out, or returned malformed output."""

    retryable = True


class StorageUnavailable(CodeSearchError):
    """The vector store could not complete an I/O operation."""

    retryable = True


class DimensionMismatch(CodeSearchError):
    """A vector's length differs from the configured dimension."""

    def __init__(self, expected: int, actual: int, *, context: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        where = f" ({context})" if context else ""
        super().__init__(
            f"Vector dimension mismatch{where}: expected {expected}, got {actual}"
        )


class NotFound(CodeSearchError):
    """Lookup of an identifier that is not stored."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"Document not found: {identifier!r}")


class InvalidQuery(CodeSearchError):
    """Query parameters are out of range or malformed."""


class InvalidDocument(CodeSearchError):
    """A document cannot be indexed as given (e.g. empty text or id)."""


class IndexNotReady(CodeSearchError):
    """The similarity index has not finished its startup rebuild."""

    retryable = True


class IngestCancelled(CodeSearchError):
    """Ingestion was cancelled before anything was persisted."""


class _WrappedError(CodeSearchError):
    """Operation-level failure carrying the component error that caused it."""

    def __init__(self, message: str, cause: CodeSearchError) -> None:
        super().__init__(f"{message}: {cause}")
        self.cause = cause
        self.__cause__ = cause

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.cause.retryable


class IngestError(_WrappedError):
    """Ingestion of a single document failed; prior state is untouched."""

    def __init__(self, identifier: str, cause: CodeSearchError) -> None:
        self.identifier = identifier
        super().__init__(f"Failed to ingest {identifier!r}", cause)


class QueryFailed(_WrappedError):
    """A query could not be executed (e.g. the query text could not be embedded)."""

    def __init__(self, cause: CodeSearchError) -> None:
        super().__init__("Query failed", cause)


__all__ = [
    "CodeSearchError",
    "DimensionMismatch",
    "EmbeddingUnavailable",
    "IndexNotReady",
    "IngestCancelled",
    "IngestError",
    "InvalidDocument",
    "InvalidQuery",
    "NotFound",
    "QueryFailed",
    "StorageUnavailable",
]
