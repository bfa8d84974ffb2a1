# =============================================================================
# Ingestion Orchestrator — Filing Status State Machine
# =============================================================================
#
# Drives one filing from raw upload to queryable, embedded chunks.
#
# INGESTION PIPELINE (ingest_filing):
#   1. Load filing; `ready` short-circuits as a no-op
#   2. Status → EXTRACTING, clear the previous error
#   3. Download the blob (with deadline) and extract text
#   4. Chunk; zero chunks is a ChunkingError
#   5. Status → CHUNKED; persist text, chunk_count, extracted_at
#   6. Replace ALL chunk rows of the filing (delete, then insert)
#   7. Embedding sub-flow over chunks whose embedding is NULL
#   8. Status → READY
#
# EMBEDDING SUB-FLOW (embed_filing_chunks, also callable on its own):
#   pending chunks → Status → EMBEDDING → batches of the client's batch size,
#   each batch of vectors written back by chunk id → Status → READY
#
# FAILURE POLICY: Any exception marks the filing FAILED with the message
# (truncated to 1000 chars) and is re-raised. Nothing is swallowed; the API
# layer turns the exception into an HTTP error.
#
# DESIGN DECISION: No resume-from-midpoint. A re-run on a FAILED filing
# restarts from extraction and replaces every chunk, so partial state from
# the failed attempt is simply discarded. Only the standalone embedding
# sub-flow resumes: it re-embeds just the rows that are still NULL.
#
# DESIGN DECISION: Every status write goes through status.transition().
# A trigger for a filing already mid-ingestion is rejected up front
# (InvalidTransitionError) without touching the filing, so a duplicate
# request cannot flip a healthy run to FAILED.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from filing_rag.db.models import IngestionStatus
from filing_rag.errors import (
    ChunkingError,
    FilingNotFoundError,
    InvalidTransitionError,
    StorageError,
)
from filing_rag.services.blobstore import BlobStore
from filing_rag.services.chunker import Chunker, approximate_page_number, normalize_text
from filing_rag.services.embedder import EmbeddingClient, EmbeddingRole, run_bounded
from filing_rag.services.extractor import TextExtractor
from filing_rag.services.status import (
    IN_PROGRESS_STATUSES,
    can_transition,
    transition,
)
from filing_rag.services.store import ChunkRecord, FilingRecord, FilingStore, NewChunk

logger = logging.getLogger(__name__)

_S = IngestionStatus

MAX_ERROR_LENGTH = 1000


@dataclass
class IngestResult:
    status: str  # "success" or "noop"
    chunks: int
    embedded: int


@dataclass
class EmbedResult:
    embedded: int
    remaining: int


class IngestionPipeline:
    """
    Orchestrates extraction, chunking and embedding for one filing at a time.

    Collaborators are injected by the DI container; the pipeline holds no
    per-filing state, so one instance serves every concurrent ingestion.
    Callers must serialise triggers per filing id.
    """

    def __init__(
        self,
        store: FilingStore,
        blobs: BlobStore,
        extractor: TextExtractor,
        chunker: Chunker,
        embedder: EmbeddingClient,
        download_timeout_seconds: float | None = None,
    ) -> None:
        self.store = store
        self.blobs = blobs
        self.extractor = extractor
        self.chunker = chunker
        self.embedder = embedder
        self.download_timeout_seconds = download_timeout_seconds

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def ingest_filing(self, filing_id: str) -> IngestResult:
        """
        Run the full pipeline for one filing.

        Returns:
            IngestResult(status="success", chunks, embedded), or
            IngestResult(status="noop", ...) if the filing is already ready.

        Raises:
            FilingNotFoundError: Unknown filing id.
            InvalidTransitionError: Ingestion is already in progress.
            ExtractionError / ChunkingError / EmbeddingError / StorageError:
                After the filing has been marked FAILED.
        """
        filing = await self._load(filing_id)

        if filing.ingestion_status == _S.READY:
            logger.info("Filing %s is already ready; ingestion is a no-op", filing_id)
            return IngestResult(status="noop", chunks=filing.chunk_count, embedded=0)

        if filing.ingestion_status in IN_PROGRESS_STATUSES:
            raise InvalidTransitionError(filing.ingestion_status.value, _S.EXTRACTING.value)

        logger.info(
            "Starting ingestion: filing_id=%s, user=%s, path=%s",
            filing_id, filing.user_id, filing.storage_path,
        )

        try:
            if not filing.storage_path:
                raise StorageError(f"Filing {filing_id} has no storage path")

            # --- Step 1: EXTRACTING ---
            status = await self._move(
                filing_id, filing.ingestion_status, _S.EXTRACTING,
                ingestion_error=None,
            )

            # --- Step 2: Download + extract ---
            data = await self._download(filing.storage_path)
            extracted = await self.extractor.extract(
                data, filing.content_type or filing.original_filename,
            )

            # --- Step 3: Chunk ---
            chunks = self.chunker.chunk(extracted.text)
            if not chunks:
                raise ChunkingError("no chunks produced after noise filtering")

            # --- Step 4: CHUNKED ---
            status = await self._move(
                filing_id, status, _S.CHUNKED,
                content=extracted.text,
                chunk_count=len(chunks),
                extracted_at=_utcnow(),
            )

            # --- Step 5: Full chunk replacement ---
            text_length = len(normalize_text(extracted.text))
            await self.store.replace_chunks(
                filing_id,
                filing.user_id,
                [
                    NewChunk(
                        chunk_index=chunk.index,
                        content=chunk.content,
                        token_count=chunk.token_estimate,
                        page_number=approximate_page_number(
                            chunk.start, text_length, extracted.page_count,
                        ),
                    )
                    for chunk in chunks
                ],
            )

            # --- Step 6: Embedding sub-flow ---
            embed_result = await self._embed_pending(filing_id, status)

        except Exception as exc:
            await self._record_failure(filing_id, exc)
            raise

        result = IngestResult(
            status="success", chunks=len(chunks), embedded=embed_result.embedded,
        )
        logger.info("Ingestion complete for filing %s: %s", filing_id, result)
        return result

    async def embed_filing_chunks(self, filing_id: str) -> EmbedResult:
        """
        Embed every chunk of the filing whose embedding is still NULL.

        Safe to re-invoke after an EmbeddingError: vectors written by earlier
        batches are kept and only the remaining rows are sent again.
        """
        filing = await self._load(filing_id)

        if filing.ingestion_status == _S.EXTRACTING:
            # Chunks are about to be replaced by the running extraction
            raise InvalidTransitionError(filing.ingestion_status.value, _S.EMBEDDING.value)

        try:
            return await self._embed_pending(filing_id, filing.ingestion_status)
        except Exception as exc:
            await self._record_failure(filing_id, exc)
            raise

    # -----------------------------------------------------------------------
    # Internal Helpers
    # -----------------------------------------------------------------------

    async def _embed_pending(
        self,
        filing_id: str,
        status: IngestionStatus,
    ) -> EmbedResult:
        pending = await self.store.pending_chunks(filing_id)

        if not pending:
            if await self.store.count_chunks(filing_id) == 0:
                raise ChunkingError(f"Filing {filing_id} has no chunks to embed")
            if status != _S.READY:
                await self._move(filing_id, status, _S.READY, ingestion_error=None)
            return EmbedResult(embedded=0, remaining=0)

        status = await self._move(
            filing_id, status, _S.EMBEDDING,
            embedding_model=self.embedder.model,
        )

        batch_size = self.embedder.batch_size
        batches = [pending[i : i + batch_size] for i in range(0, len(pending), batch_size)]
        logger.info(
            "Embedding %d pending chunks of filing %s in %d batches (model=%s)",
            len(pending), filing_id, len(batches), self.embedder.model,
        )

        if self.embedder.max_concurrency == 1:
            embedded = 0
            for batch in batches:
                embedded += await self._embed_batch(batch)
        else:
            # A failed batch cancels its siblings before the filing is marked FAILED
            embedded = sum(await run_bounded(
                [self._embed_batch(batch) for batch in batches],
                self.embedder.max_concurrency,
            ))

        await self._move(filing_id, status, _S.READY, ingestion_error=None)
        return EmbedResult(embedded=embedded, remaining=max(0, len(pending) - embedded))

    async def _embed_batch(self, batch: list[ChunkRecord]) -> int:
        vectors = await self.embedder.embed(
            [chunk.content for chunk in batch], EmbeddingRole.DOCUMENT,
        )
        await self.store.write_embeddings(
            [(chunk.id, vector) for chunk, vector in zip(batch, vectors, strict=True)],
            self.embedder.model,
            _utcnow(),
        )
        logger.debug(
            "Wrote %d embeddings (chunks %d-%d)",
            len(batch), batch[0].chunk_index, batch[-1].chunk_index,
        )
        return len(batch)

    async def _load(self, filing_id: str) -> FilingRecord:
        filing = await self.store.get_filing(filing_id)
        if filing is None:
            raise FilingNotFoundError(f"Filing {filing_id} not found")
        return filing

    async def _move(
        self,
        filing_id: str,
        current: IngestionStatus,
        target: IngestionStatus,
        **fields,
    ) -> IngestionStatus:
        """Validate the transition, then persist it with any extra fields."""
        transition(current, target)
        await self.store.update_filing(filing_id, ingestion_status=target, **fields)
        logger.debug("Filing %s: %s -> %s", filing_id, current.value, target.value)
        return target

    async def _download(self, storage_path: str) -> bytes:
        try:
            return await asyncio.wait_for(
                self.blobs.download(storage_path),
                timeout=self.download_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise StorageError(
                f"blob download timed out after {self.download_timeout_seconds}s"
            ) from exc

    async def _record_failure(self, filing_id: str, exc: Exception) -> None:
        logger.exception("Ingestion failed for filing %s: %s", filing_id, exc)

        message = (str(exc) or type(exc).__name__)[:MAX_ERROR_LENGTH]
        try:
            current = await self.store.get_filing(filing_id)
            if current is not None and can_transition(current.ingestion_status, _S.FAILED):
                await self.store.update_filing(
                    filing_id, ingestion_status=_S.FAILED, ingestion_error=message,
                )
        except Exception:
            # The original error is re-raised by the caller either way
            logger.exception("Could not mark filing %s as failed", filing_id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
