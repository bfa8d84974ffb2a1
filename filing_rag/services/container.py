# =============================================================================
# Dependency Container — Process-Wide Component Graph
# =============================================================================
#
# Builds every component exactly once and wires collaborators explicitly:
#
#   Settings
#   ├── FilingStore (pgvector | memory)     BlobStore (local disk)
#   ├── EmbeddingProvider → EmbeddingClient
#   ├── LLMProvider
#   ├── TextExtractor, Chunker
#   ├── IngestionPipeline(store, blobs, extractor, chunker, embedder)
#   ├── RetrievalEngine(store, embedder) → AnswerSynthesizer(llm) → QAService
#   └── FilingService(store, blobs)
#
# DESIGN DECISION: Provider clients are singletons owned by this container,
# not module globals. Components receive them as constructor arguments, so
# tests swap any piece (fake embeddings, fake LLM, memory store) by passing
# overrides to build_container().
#
# The API process uses get_container() (lru_cache). Celery tasks call
# build_container() with a loop-local store because each task runs its own
# event loop.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from filing_rag.config import Settings, get_settings
from filing_rag.services.blobstore import BlobStore, LocalBlobStore
from filing_rag.services.chunker import Chunker
from filing_rag.services.embedder import (
    EmbeddingClient,
    EmbeddingProvider,
    OpenAIEmbeddingProvider,
)
from filing_rag.services.extractor import TextExtractor
from filing_rag.services.filings import FilingService
from filing_rag.services.llm import LLMProvider, create_llm_provider
from filing_rag.services.pipeline import IngestionPipeline
from filing_rag.services.qa import QAService
from filing_rag.services.retrieval import RetrievalEngine
from filing_rag.services.store import FilingStore, create_filing_store
from filing_rag.services.synthesizer import AnswerSynthesizer

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    store: FilingStore
    blobs: BlobStore
    embedder: EmbeddingClient
    llm: LLMProvider
    pipeline: IngestionPipeline
    retrieval: RetrievalEngine
    synthesizer: AnswerSynthesizer
    qa: QAService
    filings: FilingService


def build_container(
    settings: Settings,
    *,
    store: FilingStore | None = None,
    blobs: BlobStore | None = None,
    embedding_provider: EmbeddingProvider | None = None,
    llm: LLMProvider | None = None,
) -> Container:
    """Wire the component graph; any collaborator may be overridden."""
    if store is None:
        session_factory = None
        if settings.store_backend == "postgres":
            from filing_rag.db.engine import get_async_session_factory

            session_factory = get_async_session_factory()
        store = create_filing_store(settings.store_backend, session_factory)

    if blobs is None:
        blobs = LocalBlobStore(settings.blob_dir)

    if embedding_provider is None:
        embedding_provider = OpenAIEmbeddingProvider(
            model=settings.embedding_model,
            api_key=settings.embedding_api_key,
            base_url=settings.embedding_base_url,
            dimensions=settings.embedding_dimensions,
            document_prefix=settings.embedding_document_prefix,
            query_prefix=settings.embedding_query_prefix,
        )

    if llm is None:
        llm = create_llm_provider(settings)

    timeout = settings.external_call_timeout_seconds or None

    embedder = EmbeddingClient(
        embedding_provider,
        dimensions=settings.embedding_dimensions,
        batch_size=settings.embedding_batch_size,
        max_concurrency=settings.embedding_max_concurrency,
        timeout_seconds=timeout,
    )

    pipeline = IngestionPipeline(
        store=store,
        blobs=blobs,
        extractor=TextExtractor(
            ocr_enabled=settings.pdf_ocr_enabled,
            ocr_scale=settings.pdf_ocr_scale,
            ocr_max_pages=settings.pdf_ocr_max_pages,
            ocr_language=settings.pdf_ocr_language,
            guard_window=settings.binary_guard_window,
        ),
        chunker=Chunker(settings.chunk_size, settings.chunk_overlap),
        embedder=embedder,
        download_timeout_seconds=timeout,
    )

    retrieval = RetrievalEngine(
        store,
        embedder,
        top_k=settings.retrieval_top_k,
        min_similarity=settings.retrieval_min_similarity,
    )
    synthesizer = AnswerSynthesizer(
        llm,
        chunk_char_limit=settings.prompt_chunk_char_limit,
        snippet_chars=settings.citation_snippet_chars,
        timeout_seconds=timeout,
    )

    logger.info(
        "Built container (store=%s, embedding_model=%s, llm=%s/%s)",
        type(store).__name__, embedder.model, settings.llm_provider, llm.model,
    )

    return Container(
        settings=settings,
        store=store,
        blobs=blobs,
        embedder=embedder,
        llm=llm,
        pipeline=pipeline,
        retrieval=retrieval,
        synthesizer=synthesizer,
        qa=QAService(
            store, retrieval, synthesizer, log_queries=settings.query_logging_enabled,
        ),
        filings=FilingService(store, blobs, settings.accepted_content_types),
    )


@lru_cache
def get_container() -> Container:
    """The API process's container, built on first request."""
    return build_container(get_settings())
