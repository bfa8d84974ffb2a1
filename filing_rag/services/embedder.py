# =============================================================================
# Embedding Client — Batched, Validated, Role-Tagged (Provider-Agnostic)
# =============================================================================
#
# Turns chunk texts and questions into fixed-dimension vectors using any
# OpenAI-compatible embeddings endpoint (OpenAI, DashScope, Jina, vLLM, ...).
#
# ARCHITECTURE:
#   EmbeddingProvider (Protocol)      — one HTTP request per call
#   └── OpenAIEmbeddingProvider       — AsyncOpenAI, lazy client
#   EmbeddingClient                   — batching + validation on top
#       ├── embed(texts, role)        — N texts in, N vectors out, same order
#       └── embed_query(question)     — single query-role vector
#
# DESIGN DECISION: Validation lives in the client, not the provider.
# Whatever the backend, a batch that returns the wrong number of vectors or
# a vector of the wrong dimension raises EmbeddingError. Nothing is padded
# or truncated; a silently wrong vector corrupts retrieval forever.
#
# DESIGN DECISION: Roles are explicit. Asymmetric models (e5, bge, Jina v3)
# embed "passage" and "query" text differently. The provider prepends a
# configurable per-role prefix; symmetric models leave both empty.
#
# DESIGN DECISION: Batches may be dispatched concurrently (bounded by a
# semaphore) when the provider allows it. Each batch writes into its own
# slice of the output, so results are always attributed to the right input.
# One failed batch cancels the rest before the error reaches the caller.
#
# BATCH LIMIT: providers cap texts per request (96 for the strictest one we
# target). The configured batch size is clamped to that ceiling.
# =============================================================================

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Coroutine, Sequence
from typing import Any, Protocol, TypeVar

from openai import AsyncOpenAI

from filing_rag.errors import EmbeddingError

logger = logging.getLogger(__name__)

PROVIDER_MAX_BATCH = 96

T = TypeVar("T")


async def run_bounded(
    coros: Sequence[Coroutine[Any, Any, T]],
    limit: int,
) -> list[T]:
    """
    Await coroutines with at most `limit` running at once.

    Results come back in input order. The first failure cancels every
    sibling and is awaited until they have all stopped, then re-raised
    as-is (not wrapped in an ExceptionGroup).
    """
    semaphore = asyncio.Semaphore(limit)

    async def bounded(coro: Coroutine[Any, Any, T]) -> T:
        try:
            async with semaphore:
                return await coro
        finally:
            # No-op once awaited; closes a coroutine cancelled before it started
            coro.close()

    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(bounded(coro)) for coro in coros]
    except ExceptionGroup as errors:
        raise errors.exceptions[0]
    return [task.result() for task in tasks]


class EmbeddingRole(str, enum.Enum):
    """What a text is being embedded for."""

    DOCUMENT = "document"  # chunk text, stored for retrieval
    QUERY = "query"  # a user's question


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class EmbeddingProvider(Protocol):
    """
    Protocol for a single embedding request.

    Implementations issue exactly one upstream call per invocation and
    return one vector per input text, in input order.
    """

    model: str

    async def embed(
        self,
        texts: list[str],
        role: EmbeddingRole,
    ) -> list[list[float]]:
        ...


# ---------------------------------------------------------------------------
# Implementation: OpenAI-compatible /embeddings
# ---------------------------------------------------------------------------


class OpenAIEmbeddingProvider:
    """
    Embeddings over the OpenAI SDK with a configurable base_url.

    The AsyncOpenAI client is built on first use: it manages its own
    connection pool and is safe to share across concurrent tasks, and
    deferring construction avoids import-time failures without an API key.
    """

    def __init__(
        self,
        model: str,
        api_key: str | None,
        base_url: str | None = None,
        dimensions: int | None = None,
        document_prefix: str = "",
        query_prefix: str = "",
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._base_url = base_url
        self._dimensions = dimensions
        self._prefixes = {
            EmbeddingRole.DOCUMENT: document_prefix,
            EmbeddingRole.QUERY: query_prefix,
        }
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ValueError(
                    "No API key configured for embeddings. "
                    "Set EMBEDDING_API_KEY in .env"
                )
            client_kwargs: dict = {"api_key": self._api_key}
            if self._base_url:
                client_kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**client_kwargs)

            logger.info(
                "Initialized embedding client (model=%s, base_url=%s)",
                self.model,
                self._base_url or "https://api.openai.com/v1",
            )
        return self._client

    async def embed(
        self,
        texts: list[str],
        role: EmbeddingRole,
    ) -> list[list[float]]:
        prefix = self._prefixes.get(role, "")
        create_kwargs: dict = {
            "model": self.model,
            "input": [f"{prefix}{text}" for text in texts] if prefix else list(texts),
        }
        if self._dimensions:
            create_kwargs["dimensions"] = self._dimensions

        response = await self._get_client().embeddings.create(**create_kwargs)

        # Sort by item.index: order mismatches would silently corrupt embeddings
        return [item.embedding for item in sorted(response.data, key=lambda x: x.index)]


# ---------------------------------------------------------------------------
# Batching Client
# ---------------------------------------------------------------------------


class EmbeddingClient:
    """
    Batches texts to an EmbeddingProvider and validates every response.

    Args:
        provider: The upstream embedding provider.
        dimensions: Expected vector dimension; any other size is an error.
        batch_size: Texts per request, clamped to PROVIDER_MAX_BATCH.
        max_concurrency: Batches in flight at once (1 = sequential).
        timeout_seconds: Deadline per batch request; None disables it.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        dimensions: int,
        batch_size: int = 90,
        max_concurrency: int = 1,
        timeout_seconds: float | None = None,
    ) -> None:
        self.provider = provider
        self.dimensions = dimensions
        self.batch_size = max(1, min(batch_size, PROVIDER_MAX_BATCH))
        self.max_concurrency = max(1, max_concurrency)
        self.timeout_seconds = timeout_seconds

    @property
    def model(self) -> str:
        return self.provider.model

    async def embed(
        self,
        texts: Sequence[str],
        role: EmbeddingRole = EmbeddingRole.DOCUMENT,
    ) -> list[list[float]]:
        """
        Embed texts, returning exactly one vector per input in input order.

        Raises:
            EmbeddingError: On request failure, timeout, or a count or
                dimension mismatch in any batch.
        """
        if not texts:
            return []

        results: list[list[float]] = [[] for _ in texts]
        offsets = range(0, len(texts), self.batch_size)

        if self.max_concurrency == 1 or len(offsets) == 1:
            for offset in offsets:
                await self._embed_into(results, texts, offset, role)
        else:
            await run_bounded(
                [self._embed_into(results, texts, offset, role) for offset in offsets],
                self.max_concurrency,
            )

        logger.info(
            "Generated %d %s embeddings in %d batches (model=%s, dimensions=%d)",
            len(texts), role.value, len(offsets), self.model, self.dimensions,
        )
        return results

    async def embed_query(self, question: str) -> list[float]:
        """Embed a single question with the query role."""
        return (await self.embed([question], EmbeddingRole.QUERY))[0]

    async def _embed_into(
        self,
        results: list[list[float]],
        texts: Sequence[str],
        offset: int,
        role: EmbeddingRole,
    ) -> None:
        batch = list(texts[offset : offset + self.batch_size])
        logger.debug(
            "Embedding batch %d-%d of %d texts", offset + 1, offset + len(batch), len(texts),
        )

        try:
            vectors = await asyncio.wait_for(
                self.provider.embed(batch, role),
                timeout=self.timeout_seconds,
            )
        except EmbeddingError:
            raise
        except asyncio.TimeoutError as exc:
            raise EmbeddingError(
                f"embedding request timed out after {self.timeout_seconds}s"
            ) from exc
        except Exception as exc:
            raise EmbeddingError(f"embedding request failed: {exc}") from exc

        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"embedding provider returned {len(vectors)} vectors "
                f"for a batch of {len(batch)} texts"
            )
        for position, vector in enumerate(vectors):
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"embedding {offset + position} has dimension {len(vector)}, "
                    f"expected {self.dimensions}"
                )
            results[offset + position] = list(vector)
