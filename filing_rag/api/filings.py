# =============================================================================
# Filings API — Upload, List, Delete, Ingest, Embed
# =============================================================================
#
# ENDPOINTS:
#   POST   /filings              — upload a PDF/text filing, trigger ingestion
#   GET    /filings              — caller's filings with ingestion status
#   DELETE /filings/{id}         — delete filing, its chunks and its blob
#   POST   /filings/{id}/ingest  — (re-)run ingestion
#   POST   /filings/{id}/embed   — re-run only the embedding sub-flow
#
# DESIGN DECISION: Ingestion runs in Celery by default (202 + task id) and
# inline when `ingest_in_background` is off or the store is in-memory
# (a worker process could not see an in-memory store). Inline failures
# surface as HTTP errors through the handlers in main.py, after the
# filing has been marked `failed`.
#
# Triggers are serialised per filing: a filing that is extracting, chunked
# or embedding is rejected with 409 before anything is queued.
# =============================================================================

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile

from filing_rag.api.deps import get_current_user_id, get_services
from filing_rag.db.models import IngestionStatus
from filing_rag.errors import InvalidTransitionError
from filing_rag.models.responses import (
    EmbedResponse,
    FilingResponse,
    IngestResponse,
    UploadResponse,
)
from filing_rag.services.container import Container
from filing_rag.services.status import IN_PROGRESS_STATUSES
from filing_rag.services.store import FilingRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/filings", tags=["Filings"])


async def _trigger_ingestion(services: Container, filing: FilingRecord) -> IngestResponse:
    if filing.ingestion_status == IngestionStatus.READY:
        return IngestResponse(
            filing_id=filing.id, status="noop", chunks=filing.chunk_count,
        )
    if filing.ingestion_status in IN_PROGRESS_STATUSES:
        raise InvalidTransitionError(
            filing.ingestion_status.value, IngestionStatus.EXTRACTING.value,
        )

    settings = services.settings
    if settings.ingest_in_background and settings.store_backend == "postgres":
        from filing_rag.workers.tasks import ingest_filing

        task = ingest_filing.delay(filing.id)
        logger.info("Queued ingestion of filing %s (task_id=%s)", filing.id, task.id)
        return IngestResponse(filing_id=filing.id, status="queued", task_id=task.id)

    result = await services.pipeline.ingest_filing(filing.id)
    return IngestResponse(
        filing_id=filing.id,
        status=result.status,
        chunks=result.chunks,
        embedded=result.embedded,
    )


@router.post(
    "",
    response_model=UploadResponse,
    status_code=201,
    summary="Upload a filing and start ingestion",
)
async def upload_filing(
    file: UploadFile = File(..., description="PDF or plain-text filing"),
    title: str | None = Form(default=None),
    ticker: str | None = Form(default=None),
    filing_type: str | None = Form(default=None, description="e.g. 10-K, 10-Q, 8-K"),
    filing_date: date | None = Form(default=None),
    user_id: str = Depends(get_current_user_id),
    services: Container = Depends(get_services),
) -> UploadResponse:
    data = await file.read()
    filing = await services.filings.upload(
        user_id=user_id,
        data=data,
        filename=file.filename,
        content_type=file.content_type,
        title=title,
        ticker=ticker,
        filing_type=filing_type,
        filing_date=filing_date,
    )

    ingestion = await _trigger_ingestion(services, filing)
    refreshed = await services.store.get_filing(filing.id) or filing
    return UploadResponse(
        filing=FilingResponse.model_validate(refreshed),
        ingestion=ingestion,
    )


@router.get("", response_model=list[FilingResponse], summary="List your filings")
async def list_filings(
    user_id: str = Depends(get_current_user_id),
    services: Container = Depends(get_services),
) -> list[FilingResponse]:
    filings = await services.filings.list_filings(user_id)
    return [FilingResponse.model_validate(f) for f in filings]


@router.delete("/{filing_id}", status_code=204, summary="Delete a filing")
async def delete_filing(
    filing_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Container = Depends(get_services),
) -> Response:
    await services.filings.delete_filing(user_id, filing_id)
    return Response(status_code=204)


@router.post(
    "/{filing_id}/ingest",
    response_model=IngestResponse,
    summary="Run (or re-run) ingestion for a filing",
)
async def ingest_filing_endpoint(
    filing_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Container = Depends(get_services),
) -> IngestResponse:
    filing = await services.filings.get_owned_filing(user_id, filing_id)
    return await _trigger_ingestion(services, filing)


@router.post(
    "/{filing_id}/embed",
    response_model=EmbedResponse,
    summary="Embed chunks that are still missing a vector",
)
async def embed_filing_endpoint(
    filing_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Container = Depends(get_services),
) -> EmbedResponse:
    await services.filings.get_owned_filing(user_id, filing_id)
    result = await services.pipeline.embed_filing_chunks(filing_id)
    return EmbedResponse(
        filing_id=filing_id, embedded=result.embedded, remaining=result.remaining,
    )
