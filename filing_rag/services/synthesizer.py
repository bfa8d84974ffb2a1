# =============================================================================
# Answer Synthesizer — Grounded Prompt + Citation Binding
# =============================================================================
#
# retrieved chunks → system + user prompt → LLM → {answer, citations}
#
# DESIGN DECISION: Zero chunks never reach the model. With no grounding
# the model can only hallucinate, so an empty retrieval returns a fixed
# fallback answer and no citations.
#
# DESIGN DECISION: Citations come from the retrieved chunks, not from the
# model's prose. Whether or not the model emitted every [chunk-id] marker,
# the caller always gets full provenance for what the answer was built on.
#
# PROMPT SHAPE (one block per chunk, content capped at 1200 characters):
#   Chunk 1 | ID: <chunk_id> | Filing <filing_id> | Ticker: AAPL | Type: 10-K | Date: 2024-01-31 | Sim: 0.812
#   <content>
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date

from filing_rag.errors import LLMError
from filing_rag.services.llm import LLMProvider
from filing_rag.services.store import ScoredChunk

logger = logging.getLogger(__name__)

FALLBACK_ANSWER = (
    "I could not find any relevant excerpts in your filings to answer that question."
)

SYSTEM_PROMPT = (
    "You are a meticulous financial analyst. Answer only with the context "
    "chunks provided. If the context does not answer the question, say you "
    "cannot find the information. Always cite the chunk id in square "
    "brackets like [chunk-id]."
)

_INSTRUCTIONS = (
    "Instructions:\n"
    "- Reference only the provided chunks.\n"
    "- Quote or paraphrase concisely.\n"
    "- Attach citations using the chunk ID in square brackets.\n"
    "- If multiple chunks support the same point, cite all relevant IDs."
)

_WHITESPACE = re.compile(r"\s+")


@dataclass
class Citation:
    chunk_id: str
    filing_id: str
    similarity: float
    snippet: str
    ticker: str | None = None
    filing_type: str | None = None
    filing_date: date | None = None


@dataclass
class SynthesizedAnswer:
    answer: str
    citations: list[Citation] = field(default_factory=list)
    model: str | None = None  # None when the fallback answer was used


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def build_messages(
    question: str,
    chunks: list[ScoredChunk],
    chunk_char_limit: int = 1200,
) -> tuple[str, list[dict[str, str]]]:
    """Return (system prompt, messages) for a grounded answer."""
    blocks: list[str] = []
    for position, chunk in enumerate(chunks, start=1):
        meta = [
            f"Ticker: {chunk.ticker}" if chunk.ticker else None,
            f"Type: {chunk.filing_type}" if chunk.filing_type else None,
            f"Date: {chunk.filing_date.isoformat()}" if chunk.filing_date else None,
            f"Sim: {chunk.similarity:.3f}",
        ]
        header = " | ".join(
            [f"Chunk {position}", f"ID: {chunk.chunk_id}", f"Filing {chunk.filing_id}"]
            + [part for part in meta if part]
        )
        blocks.append(f"{header}\n{_collapse(chunk.content)[:chunk_char_limit]}")

    context = "\n\n".join(blocks)
    user_prompt = f"Question: {question}\n\nContext Chunks:\n{context}\n\n{_INSTRUCTIONS}"
    return SYSTEM_PROMPT, [{"role": "user", "content": user_prompt}]


def build_citations(chunks: list[ScoredChunk], snippet_chars: int = 280) -> list[Citation]:
    return [
        Citation(
            chunk_id=chunk.chunk_id,
            filing_id=chunk.filing_id,
            similarity=chunk.similarity,
            snippet=_collapse(chunk.content)[:snippet_chars],
            ticker=chunk.ticker,
            filing_type=chunk.filing_type,
            filing_date=chunk.filing_date,
        )
        for chunk in chunks
    ]


class AnswerSynthesizer:
    """Calls the LLM over retrieved chunks and binds citations to the answer."""

    def __init__(
        self,
        llm: LLMProvider,
        chunk_char_limit: int = 1200,
        snippet_chars: int = 280,
        timeout_seconds: float | None = None,
    ) -> None:
        self.llm = llm
        self.chunk_char_limit = chunk_char_limit
        self.snippet_chars = snippet_chars
        self.timeout_seconds = timeout_seconds

    async def synthesize(
        self,
        question: str,
        chunks: list[ScoredChunk],
    ) -> SynthesizedAnswer:
        """
        Produce a cited answer.

        Raises:
            LLMError: If the model call fails or exceeds the deadline.
        """
        if not chunks:
            return SynthesizedAnswer(answer=FALLBACK_ANSWER)

        system, messages = build_messages(question, chunks, self.chunk_char_limit)

        try:
            response = await asyncio.wait_for(
                self.llm.complete(messages, system=system),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise LLMError(f"LLM call timed out after {self.timeout_seconds}s") from exc
        except Exception as exc:
            raise LLMError(f"LLM call failed: {exc}") from exc

        logger.info(
            "Synthesized answer over %d chunks (model=%s, tokens in=%d out=%d)",
            len(chunks), response.model, response.input_tokens, response.output_tokens,
        )
        return SynthesizedAnswer(
            answer=response.content.strip(),
            citations=build_citations(chunks, self.snippet_chars),
            model=response.model,
        )
