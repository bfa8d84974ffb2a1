# =============================================================================
# Question Answering — Grounded, Cited Answers
# =============================================================================
#
# FLOW:
#   1. Normalise filters; every explicit filing id must belong to the caller
#   2. Count the caller's embedded chunks; zero → "no embedded filings"
#      guidance, no retrieval, no LLM call
#   3. Retrieve; empty → "no relevant chunks" guidance, fallback answer
#   4. Synthesize the cited answer
#   5. Log the exchange (best-effort: a logging failure never fails the answer)
#
# Three user-visible outcomes stay distinct: nothing ingested yet, nothing
# relevant, and a real answer. Ingestion failures surface on the filing
# itself (ingestion_error), never here.
# =============================================================================

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from filing_rag.errors import AuthorizationError, FilingNotFoundError
from filing_rag.services.retrieval import RetrievalEngine, normalize_filters
from filing_rag.services.store import FilingStore, SearchFilters
from filing_rag.services.synthesizer import FALLBACK_ANSWER, AnswerSynthesizer, Citation

logger = logging.getLogger(__name__)

NO_EMBEDDED_FILINGS_GUIDANCE = (
    "No embedded filings found. Upload a filing, run ingestion, and try "
    "asking your question again."
)
NO_RELEVANT_CHUNKS_GUIDANCE = (
    "No passages in your filings matched this question closely enough. "
    "Try rephrasing it or removing some filters."
)


@dataclass
class QAResult:
    answer: str
    citations: list[Citation] = field(default_factory=list)
    guidance: str | None = None
    model: str | None = None
    embedded_chunk_count: int = 0
    retrieved_count: int = 0
    latency_ms: int = 0


class QAService:
    """Answers a user's question over their own embedded filings."""

    def __init__(
        self,
        store: FilingStore,
        retrieval: RetrievalEngine,
        synthesizer: AnswerSynthesizer,
        log_queries: bool = True,
    ) -> None:
        self.store = store
        self.retrieval = retrieval
        self.synthesizer = synthesizer
        self.log_queries = log_queries

    async def ask_question(
        self,
        user_id: str,
        question: str,
        filters: Mapping[str, Any] | SearchFilters | None = None,
    ) -> QAResult:
        """
        Answer a question, citing the chunks it was grounded on.

        Raises:
            ValueError: Blank question.
            FilingNotFoundError: A filtered filing id does not exist.
            AuthorizationError: A filtered filing id belongs to another user.
            EmbeddingError / RetrievalError / LLMError: Read-path failures;
                no persisted state is changed.
        """
        started = time.perf_counter()
        question = question.strip()
        if not question:
            raise ValueError("question is required")

        normalized = filters if isinstance(filters, SearchFilters) else normalize_filters(filters)
        await self._check_ownership(user_id, normalized)

        embedded_count = await self.store.count_embedded_chunks(user_id)
        if embedded_count == 0:
            result = QAResult(
                answer=FALLBACK_ANSWER,
                guidance=NO_EMBEDDED_FILINGS_GUIDANCE,
            )
        else:
            chunks = await self.retrieval.retrieve(user_id, question, normalized)
            synthesized = await self.synthesizer.synthesize(question, chunks)
            result = QAResult(
                answer=synthesized.answer,
                citations=synthesized.citations,
                guidance=None if chunks else NO_RELEVANT_CHUNKS_GUIDANCE,
                model=synthesized.model,
                embedded_chunk_count=embedded_count,
                retrieved_count=len(chunks),
            )

        result.latency_ms = int((time.perf_counter() - started) * 1000)
        await self._log(user_id, question, result)
        return result

    async def _check_ownership(self, user_id: str, filters: SearchFilters) -> None:
        for filing_id in filters.filing_ids or []:
            filing = await self.store.get_filing(filing_id)
            if filing is None:
                raise FilingNotFoundError(f"Filing {filing_id} not found")
            if filing.user_id != user_id:
                raise AuthorizationError(f"Filing {filing_id} is not owned by this user")

    async def _log(self, user_id: str, question: str, result: QAResult) -> None:
        if not self.log_queries:
            return
        try:
            await self.store.log_query(
                user_id=user_id,
                question=question,
                answer=result.answer,
                latency_ms=result.latency_ms,
                retrieved_count=result.retrieved_count,
                model=result.model,
            )
        except Exception as exc:
            logger.warning("Failed to log query for user %s: %s", user_id, exc)
