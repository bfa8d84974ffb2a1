# =============================================================================
# Unit Tests — Embedding Client
# =============================================================================
#
# Batching, ordering and validation run against in-process providers; the
# OpenAI provider is tested with a mocked AsyncOpenAI client.
# =============================================================================

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from filing_rag.errors import EmbeddingError
from filing_rag.services.embedder import (
    PROVIDER_MAX_BATCH,
    EmbeddingClient,
    EmbeddingRole,
    OpenAIEmbeddingProvider,
)


def _run(coro):
    return asyncio.run(coro)


class _IndexProvider:
    """Encodes each text (a stringified integer) into the vector's first slot."""

    model = "index-embedder"

    def __init__(self, dimensions=4, reverse_delay=False):
        self.dimensions = dimensions
        self.reverse_delay = reverse_delay
        self.batches: list[list[str]] = []
        self.roles: list[EmbeddingRole] = []

    async def embed(self, texts, role):
        self.batches.append(list(texts))
        self.roles.append(role)
        if self.reverse_delay:
            # Earlier batches finish last
            await asyncio.sleep(0.01 * (10 - len(self.batches)))
        return [[float(text)] + [0.0] * (self.dimensions - 1) for text in texts]


class TestEmbeddingClient:
    """Tests for EmbeddingClient.embed()."""

    def test_batches_of_ninety(self):
        provider = _IndexProvider()
        client = EmbeddingClient(provider, dimensions=4, batch_size=90)

        vectors = _run(client.embed([str(i) for i in range(150)]))

        assert [len(batch) for batch in provider.batches] == [90, 60]
        assert len(vectors) == 150
        assert [v[0] for v in vectors] == [float(i) for i in range(150)]

    def test_empty_input_makes_no_request(self):
        provider = _IndexProvider()
        assert _run(EmbeddingClient(provider, dimensions=4).embed([])) == []
        assert provider.batches == []

    def test_batch_size_clamped_to_provider_limit(self):
        client = EmbeddingClient(_IndexProvider(), dimensions=4, batch_size=500)
        assert client.batch_size == PROVIDER_MAX_BATCH
        assert EmbeddingClient(_IndexProvider(), dimensions=4, batch_size=0).batch_size == 1

    def test_concurrent_batches_keep_input_order(self):
        provider = _IndexProvider(reverse_delay=True)
        client = EmbeddingClient(provider, dimensions=4, batch_size=90, max_concurrency=3)

        vectors = _run(client.embed([str(i) for i in range(250)]))

        assert len(provider.batches) == 3
        assert [v[0] for v in vectors] == [float(i) for i in range(250)]

    def test_document_role_by_default_query_role_for_questions(self):
        provider = _IndexProvider()
        client = EmbeddingClient(provider, dimensions=4)

        _run(client.embed(["1"]))
        vector = _run(client.embed_query("7"))

        assert provider.roles == [EmbeddingRole.DOCUMENT, EmbeddingRole.QUERY]
        assert vector[0] == 7.0

    def test_count_mismatch_raises(self):
        provider = MagicMock(model="short")
        provider.embed = AsyncMock(return_value=[[0.0] * 4])
        client = EmbeddingClient(provider, dimensions=4)

        with pytest.raises(EmbeddingError, match="returned 1 vectors for a batch of 2"):
            _run(client.embed(["a", "b"]))

    def test_dimension_mismatch_raises(self):
        provider = MagicMock(model="wide")
        provider.embed = AsyncMock(return_value=[[0.0] * 4, [0.0] * 5])
        client = EmbeddingClient(provider, dimensions=4)

        with pytest.raises(EmbeddingError, match="dimension 5, expected 4"):
            _run(client.embed(["a", "b"]))

    def test_provider_failure_is_wrapped(self):
        provider = MagicMock(model="broken")
        provider.embed = AsyncMock(side_effect=RuntimeError("503 upstream"))
        client = EmbeddingClient(provider, dimensions=4)

        with pytest.raises(EmbeddingError, match="503 upstream"):
            _run(client.embed(["a"]))

    def test_concurrent_failure_cancels_remaining_batches(self):
        finished: list[str] = []

        async def embed(texts, role):
            if texts == ["0"]:
                raise RuntimeError("503 upstream")
            await asyncio.sleep(0.05)
            finished.append(texts[0])
            return [[0.0] * 4 for _ in texts]

        provider = MagicMock(model="flaky")
        provider.embed = embed
        client = EmbeddingClient(provider, dimensions=4, batch_size=1, max_concurrency=2)

        async def embed_then_wait():
            with pytest.raises(EmbeddingError, match="503 upstream"):
                await client.embed(["0", "1", "2", "3"])
            await asyncio.sleep(0.2)

        _run(embed_then_wait())

        assert finished == []

    def test_timeout_is_wrapped(self):
        async def slow(texts, role):
            await asyncio.sleep(1)
            return [[0.0] * 4 for _ in texts]

        provider = MagicMock(model="slow")
        provider.embed = slow
        client = EmbeddingClient(provider, dimensions=4, timeout_seconds=0.01)

        with pytest.raises(EmbeddingError, match="timed out"):
            _run(client.embed(["a"]))


class TestOpenAIEmbeddingProvider:
    """Tests for the OpenAI-compatible provider with a mocked SDK client."""

    def _provider(self, **kwargs):
        provider = OpenAIEmbeddingProvider(model="text-embedding-v3", api_key="test", **kwargs)
        client = MagicMock()
        client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=[
            SimpleNamespace(index=1, embedding=[2.0]),
            SimpleNamespace(index=0, embedding=[1.0]),
        ]))
        provider._client = client
        return provider, client

    def test_results_sorted_by_index(self):
        provider, _ = self._provider()
        assert _run(provider.embed(["a", "b"], EmbeddingRole.DOCUMENT)) == [[1.0], [2.0]]

    def test_role_prefix_and_dimensions_sent(self):
        provider, client = self._provider(dimensions=1024, query_prefix="query: ")

        _run(provider.embed(["a", "b"], EmbeddingRole.QUERY))

        client.embeddings.create.assert_awaited_once_with(
            model="text-embedding-v3",
            input=["query: a", "query: b"],
            dimensions=1024,
        )

    def test_missing_api_key_raises(self):
        provider = OpenAIEmbeddingProvider(model="m", api_key=None)
        with pytest.raises(ValueError, match="No API key"):
            _run(provider.embed(["a"], EmbeddingRole.DOCUMENT))
