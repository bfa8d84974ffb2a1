# =============================================================================
# Error Taxonomy
# =============================================================================
#
# Every failure the core can raise derives from FilingRagError, so the API
# layer can map whole families to HTTP status codes in one place.
#
#   Ingestion path (filing → failed, message recorded, error re-raised):
#     ExtractionError   — empty, unreadable or binary-garbage document
#     ChunkingError     — zero chunks after every noise-filter policy
#     EmbeddingError    — provider failure or wrong count/dimension
#     StorageError      — blob or structured-store operation failed
#
#   Read path (no persisted state is touched):
#     RetrievalError    — vector search failed
#     LLMError          — language-model call failed or timed out
#
#   Preconditions:
#     InvalidUploadError   — empty upload or unsupported content type
#     AuthorizationError   — filing owned by another user
#     FilingNotFoundError  — no filing with that id
#     InvalidTransitionError — status change not allowed by the state machine
# =============================================================================

from __future__ import annotations


class FilingRagError(Exception):
    """Base class for all errors raised by the filing Q&A core."""


class ExtractionError(FilingRagError):
    """The document yielded no usable text."""


class ChunkingError(FilingRagError):
    """The chunker produced zero chunks after all fallbacks."""


class EmbeddingError(FilingRagError):
    """The embedding provider failed or returned malformed vectors."""


class RetrievalError(FilingRagError):
    """The similarity search could not be executed."""


class LLMError(FilingRagError):
    """The language-model provider failed or timed out."""


class StorageError(FilingRagError):
    """A blob or structured-store operation failed."""


class InvalidUploadError(FilingRagError):
    """The uploaded document is empty or of an unsupported type."""


class AuthorizationError(FilingRagError):
    """The requesting user does not own the referenced filing."""


class FilingNotFoundError(FilingRagError):
    """No filing exists with the requested id."""


class InvalidTransitionError(FilingRagError):
    """An ingestion status change violates the state machine."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Invalid ingestion status transition: {current} -> {target}"
        )
        self.current = current
        self.target = target
