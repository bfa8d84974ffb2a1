# =============================================================================
# Ingestion Status State Machine
# =============================================================================
#
# All status writes in the pipeline go through transition(). Invalid moves
# raise InvalidTransitionError instead of silently corrupting progress.
#
#   uploaded   → extracting | failed
#   extracting → chunked | failed
#   chunked    → embedding | ready | failed
#   embedding  → embedding | ready | failed
#   ready      → ready
#   failed     → extracting | embedding | ready | failed
#
# chunked → ready covers the embedding sub-flow finding nothing pending.
# embedding → embedding lets a crashed embedding run be retried standalone.
# failed → embedding/ready lets the embedding sub-flow alone be retried
# after an EmbeddingError; already-embedded chunks are kept.
# =============================================================================

from __future__ import annotations

from filing_rag.db.models import IngestionStatus
from filing_rag.errors import InvalidTransitionError

_S = IngestionStatus

ALLOWED_TRANSITIONS: dict[IngestionStatus, frozenset[IngestionStatus]] = {
    _S.UPLOADED: frozenset({_S.EXTRACTING, _S.FAILED}),
    _S.EXTRACTING: frozenset({_S.CHUNKED, _S.FAILED}),
    _S.CHUNKED: frozenset({_S.EMBEDDING, _S.READY, _S.FAILED}),
    _S.EMBEDDING: frozenset({_S.EMBEDDING, _S.READY, _S.FAILED}),
    _S.READY: frozenset({_S.READY}),
    _S.FAILED: frozenset({_S.EXTRACTING, _S.EMBEDDING, _S.READY, _S.FAILED}),
}

# A new ingest request for a filing in one of these states must be rejected
IN_PROGRESS_STATUSES = frozenset({_S.EXTRACTING, _S.CHUNKED, _S.EMBEDDING})


def can_transition(current: IngestionStatus, target: IngestionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(current: IngestionStatus, target: IngestionStatus) -> IngestionStatus:
    """
    Validate a status change and return the new status.

    Raises:
        InvalidTransitionError: If the state machine forbids the move.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    return target
