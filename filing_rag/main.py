# =============================================================================
# FastAPI Application Factory
# =============================================================================
#
# Run locally:
#   uvicorn filing_rag.main:app --reload
#
# ERROR MAPPING: Core exceptions carry no HTTP knowledge. One handler maps
# the FilingRagError taxonomy to status codes; the first matching class in
# _STATUS_BY_ERROR wins.
#
#   AuthorizationError        → 403    ExtractionError / ChunkingError → 422
#   FilingNotFoundError       → 404    EmbeddingError / LLMError       → 502
#   InvalidUploadError        → 400    RetrievalError / StorageError   → 503
#   InvalidTransitionError    → 409
# =============================================================================

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from filing_rag.api import ask, filings
from filing_rag.config import settings
from filing_rag.errors import (
    AuthorizationError,
    ChunkingError,
    EmbeddingError,
    ExtractionError,
    FilingNotFoundError,
    FilingRagError,
    InvalidTransitionError,
    InvalidUploadError,
    LLMError,
    RetrievalError,
    StorageError,
)
from filing_rag.logging_config import configure_logging
from filing_rag.models.responses import HealthResponse

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[FilingRagError], int]] = [
    (AuthorizationError, 403),
    (FilingNotFoundError, 404),
    (InvalidUploadError, 400),
    (InvalidTransitionError, 409),
    (ExtractionError, 422),
    (ChunkingError, 422),
    (EmbeddingError, 502),
    (LLMError, 502),
    (RetrievalError, 503),
    (StorageError, 503),
]


def status_for(exc: FilingRagError) -> int:
    for error_class, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return status_code
    return 500


async def _filing_rag_error_handler(request: Request, exc: FilingRagError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def create_app() -> FastAPI:
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Upload financial filings, ingest them into a vector index and "
            "ask questions answered with citations to the source chunks."
        ),
    )
    app.add_exception_handler(FilingRagError, _filing_rag_error_handler)

    app.include_router(filings.router)
    app.include_router(ask.router)

    @app.get("/health", response_model=HealthResponse, tags=["Health Check"])
    async def health() -> HealthResponse:
        return HealthResponse(version=settings.app_version, service=settings.app_name)

    return app


app = create_app()
