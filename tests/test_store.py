# =============================================================================
# Unit Tests — Filing Store Embedding Write-Back
# =============================================================================
#
# PgFilingStore runs against a mocked AsyncSession (no database); the
# in-memory store is exercised directly.
# =============================================================================

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from filing_rag.services.store import MemoryFilingStore, NewChunk, PgFilingStore

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _run(coro):
    return asyncio.run(coro)


def _pg_store():
    session = MagicMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    return PgFilingStore(factory), factory, session


class TestPgWriteEmbeddings:
    """Tests for PgFilingStore.write_embeddings()."""

    def test_one_statement_and_commit_per_batch(self):
        store, factory, session = _pg_store()

        _run(store.write_embeddings(
            [("chunk-1", [0.1, 0.2]), ("chunk-2", [0.3, 0.4])], "embedder-v1", NOW,
        ))

        factory.assert_called_once()
        session.execute.assert_awaited_once()
        rows = session.execute.await_args.args[1]
        assert rows == [
            {"id": "chunk-1", "embedding": [0.1, 0.2],
             "embedding_model": "embedder-v1", "embedded_at": NOW},
            {"id": "chunk-2", "embedding": [0.3, 0.4],
             "embedding_model": "embedder-v1", "embedded_at": NOW},
        ]
        session.commit.assert_awaited_once()

    def test_empty_batch_opens_no_session(self):
        store, factory, session = _pg_store()

        _run(store.write_embeddings([], "embedder-v1", NOW))

        factory.assert_not_called()
        session.execute.assert_not_awaited()


class TestMemoryWriteEmbeddings:
    """Tests for MemoryFilingStore.write_embeddings()."""

    def test_writes_every_pair(self):
        store = MemoryFilingStore()

        async def seed_and_write():
            filing = await store.create_filing(user_id="user-a", title="Q4")
            await store.replace_chunks(filing.id, "user-a", [
                NewChunk(chunk_index=i, content=f"part {i}", token_count=2) for i in range(3)
            ])
            chunks = await store.list_chunks(filing.id)
            await store.write_embeddings(
                [(chunk.id, [float(chunk.chunk_index)]) for chunk in chunks[:2]],
                "embedder-v1",
                NOW,
            )
            return filing.id

        filing_id = _run(seed_and_write())

        pending = _run(store.pending_chunks(filing_id))
        assert [c.chunk_index for c in pending] == [2]
        written = _run(store.list_chunks(filing_id))[1]
        assert written.embedding == [1.0]
        assert (written.embedding_model, written.embedded_at) == ("embedder-v1", NOW)
