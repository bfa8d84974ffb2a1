# =============================================================================
# Celery Task Definitions — Filing Ingestion
# =============================================================================
#
# Tasks are thin: each one builds a loop-local container and awaits the
# same IngestionPipeline the API uses inline.
#
# EVENT LOOPS: Celery workers are synchronous. Each task runs the async
# pipeline with asyncio.run(), which creates a fresh loop per task.
# asyncpg connections are bound to the loop that opened them, so every
# task gets its own NullPool engine (db.engine.create_worker_session_factory)
# and disposes it before the loop closes.
#
# RETRY STRATEGY: None. The pipeline already records the failure on the
# filing (status `failed`, ingestion_error set). Re-running is an explicit
# user action via POST /filings/{id}/ingest or /embed.
# =============================================================================

import asyncio
import dataclasses
import logging

from filing_rag.config import get_settings
from filing_rag.db.engine import create_worker_session_factory
from filing_rag.services.container import build_container
from filing_rag.services.store import PgFilingStore
from filing_rag.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _run_pipeline(filing_id: str, operation: str) -> dict:
    settings = get_settings()

    if settings.store_backend != "postgres":
        # A memory store in the worker would never see the API process's filings
        raise RuntimeError(
            f"Background ingestion requires store_backend=postgres, got {settings.store_backend!r}"
        )

    engine, session_factory = create_worker_session_factory()
    try:
        container = build_container(settings, store=PgFilingStore(session_factory))
        return await _dispatch(container.pipeline, filing_id, operation)
    finally:
        await engine.dispose()


async def _dispatch(pipeline, filing_id: str, operation: str) -> dict:
    if operation == "embed":
        result = await pipeline.embed_filing_chunks(filing_id)
    else:
        result = await pipeline.ingest_filing(filing_id)
    return {"filing_id": filing_id, **dataclasses.asdict(result)}


@celery_app.task(bind=True, name="ingest_filing")
def ingest_filing(self, filing_id: str) -> dict:
    """
    Run the full ingestion pipeline for one filing.

    Returns:
        {"filing_id", "status", "chunks", "embedded"}
    """
    logger.info("[%s] Ingesting filing %s", self.request.id, filing_id)
    summary = asyncio.run(_run_pipeline(filing_id, "ingest"))
    logger.info("[%s] Ingestion finished: %s", self.request.id, summary)
    return summary


@celery_app.task(bind=True, name="embed_filing_chunks")
def embed_filing_chunks(self, filing_id: str) -> dict:
    """Re-run only the embedding sub-flow (e.g. after an EmbeddingError)."""
    logger.info("[%s] Embedding pending chunks of filing %s", self.request.id, filing_id)
    summary = asyncio.run(_run_pipeline(filing_id, "embed"))
    logger.info("[%s] Embedding finished: %s", self.request.id, summary)
    return summary
