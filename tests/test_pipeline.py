# =============================================================================
# Unit Tests — Ingestion Pipeline
# =============================================================================
#
# Runs the full extract → chunk → embed flow against the in-memory store,
# a tmp_path blob store and the hashing embedding provider from conftest.
# =============================================================================

import asyncio

import pytest

from filing_rag.db.models import IngestionStatus
from filing_rag.errors import (
    ChunkingError,
    EmbeddingError,
    ExtractionError,
    FilingNotFoundError,
    InvalidTransitionError,
    StorageError,
)
from filing_rag.services.chunker import Chunker
from filing_rag.services.embedder import EmbeddingClient, EmbeddingRole
from filing_rag.services.extractor import TextExtractor
from filing_rag.services.pipeline import IngestionPipeline
from filing_rag.services.store import NewChunk

S = IngestionStatus


def _run(coro):
    return asyncio.run(coro)


def _upload(filing_service, data, filename="report.txt", content_type="text/plain", user="user-a"):
    return _run(filing_service.upload(user, data, filename, content_type))


def _seed_chunked_filing(store, count, user="user-a"):
    """A filing sitting in CHUNKED with `count` un-embedded chunks."""
    async def seed():
        filing = await store.create_filing(user_id=user, title="Seeded")
        await store.update_filing(
            filing.id, ingestion_status=S.CHUNKED, content="seeded", chunk_count=count,
        )
        await store.replace_chunks(filing.id, user, [
            NewChunk(chunk_index=i, content=f"Segment {i} revenue commentary", token_count=8)
            for i in range(count)
        ])
        return filing.id

    return _run(seed())


class TestIngestFiling:
    """Tests for IngestionPipeline.ingest_filing()."""

    def test_single_sentence_becomes_one_ready_chunk(self, pipeline, filing_service, store):
        filing = _upload(filing_service, b"Revenue grew 12% year over year.")

        result = _run(pipeline.ingest_filing(filing.id))

        assert result.status == "success"
        assert result.chunks == 1
        assert result.embedded == 1

        stored = _run(store.get_filing(filing.id))
        assert stored.ingestion_status == S.READY
        assert stored.ingestion_error is None
        assert stored.chunk_count == 1
        assert stored.content == "Revenue grew 12% year over year."
        assert stored.extracted_at is not None
        assert stored.embedding_model == "fake-hashing-embedder"

        chunks = _run(store.list_chunks(filing.id))
        assert [c.chunk_index for c in chunks] == [0]
        assert chunks[0].embedding is not None
        assert chunks[0].embedding_model == "fake-hashing-embedder"
        assert chunks[0].embedded_at is not None

    def test_ready_filing_is_a_noop(self, pipeline, filing_service, store, embedding_provider):
        filing = _upload(filing_service, b"Revenue grew 12% year over year.")
        _run(pipeline.ingest_filing(filing.id))
        chunk_ids = [c.id for c in _run(store.list_chunks(filing.id))]
        calls = len(embedding_provider.calls)

        result = _run(pipeline.ingest_filing(filing.id))

        assert result.status == "noop"
        assert result.chunks == 1
        assert [c.id for c in _run(store.list_chunks(filing.id))] == chunk_ids
        assert len(embedding_provider.calls) == calls

    def test_pdf_chunks_carry_page_numbers(self, pipeline, filing_service, store, make_pdf):
        data = make_pdf([
            "Revenue grew 12% year over year across the consolidated group.",
            "Operating income rose on lower input costs and firm pricing.",
        ])
        filing = _upload(filing_service, data, "10k.pdf", "application/pdf")

        _run(pipeline.ingest_filing(filing.id))

        chunks = _run(store.list_chunks(filing.id))
        assert len(chunks) == 1
        assert chunks[0].page_number == 1

    def test_blank_pdf_without_ocr_fails(self, pipeline, filing_service, store, make_pdf):
        filing = _upload(filing_service, make_pdf([""]), "scan.pdf", "application/pdf")

        with pytest.raises(ExtractionError):
            _run(pipeline.ingest_filing(filing.id))

        stored = _run(store.get_filing(filing.id))
        assert stored.ingestion_status == S.FAILED
        assert stored.ingestion_error == "no selectable or recognizable text"
        assert _run(store.count_chunks(filing.id)) == 0

    def test_binary_garbage_fails(self, pipeline, filing_service, store):
        filing = _upload(filing_service, b"4 0 obj\n<< /Filter /FlateDecode >>\nstream\nendstream\nendobj")

        with pytest.raises(ExtractionError):
            _run(pipeline.ingest_filing(filing.id))

        stored = _run(store.get_filing(filing.id))
        assert stored.ingestion_status == S.FAILED
        assert stored.ingestion_error == "binary garbage detected"

    def test_noise_only_text_fails_with_chunking_error(self, pipeline, filing_service, store):
        filing = _upload(filing_service, b"1234 5678 9012 3456 " * 20)

        with pytest.raises(ChunkingError):
            _run(pipeline.ingest_filing(filing.id))

        stored = _run(store.get_filing(filing.id))
        assert stored.ingestion_status == S.FAILED
        assert "no chunks produced" in stored.ingestion_error

    def test_missing_blob_path_fails(self, pipeline, store):
        filing = _run(store.create_filing(user_id="user-a", title="No blob"))

        with pytest.raises(StorageError):
            _run(pipeline.ingest_filing(filing.id))

        assert _run(store.get_filing(filing.id)).ingestion_status == S.FAILED

    def test_unknown_filing(self, pipeline):
        with pytest.raises(FilingNotFoundError):
            _run(pipeline.ingest_filing("does-not-exist"))

    @pytest.mark.parametrize("status", [S.EXTRACTING, S.CHUNKED, S.EMBEDDING])
    def test_in_progress_filing_is_rejected_untouched(self, pipeline, filing_service, store, status):
        filing = _upload(filing_service, b"Revenue grew 12% year over year.")
        _run(store.update_filing(filing.id, ingestion_status=status))

        with pytest.raises(InvalidTransitionError):
            _run(pipeline.ingest_filing(filing.id))

        stored = _run(store.get_filing(filing.id))
        assert stored.ingestion_status == status
        assert stored.ingestion_error is None

    def test_failed_filing_restarts_from_extraction(self, pipeline, filing_service, store, blobs):
        filing = _upload(filing_service, b"1234 5678 " * 20)
        with pytest.raises(ChunkingError):
            _run(pipeline.ingest_filing(filing.id))

        # The document is replaced in place, then re-ingested
        _run(blobs.upload(filing.storage_path, b"Net income rose 8% on lower costs.", "text/plain"))
        result = _run(pipeline.ingest_filing(filing.id))

        stored = _run(store.get_filing(filing.id))
        assert result.status == "success"
        assert stored.ingestion_status == S.READY
        assert stored.ingestion_error is None
        assert stored.content == "Net income rose 8% on lower costs."

    def test_reingest_replaces_all_chunks(self, pipeline, filing_service, store):
        filing = _upload(filing_service, b"Revenue grew 12% year over year.")
        _run(pipeline.ingest_filing(filing.id))
        old_ids = {c.id for c in _run(store.list_chunks(filing.id))}

        _run(store.update_filing(filing.id, ingestion_status=S.FAILED))
        _run(pipeline.ingest_filing(filing.id))

        new_chunks = _run(store.list_chunks(filing.id))
        assert len(new_chunks) == 1
        assert not old_ids & {c.id for c in new_chunks}


class TestEmbedFilingChunks:
    """Tests for the standalone embedding sub-flow."""

    def test_150_chunks_in_two_batches(self, pipeline, store, embedding_provider):
        filing_id = _seed_chunked_filing(store, 150)

        result = _run(pipeline.embed_filing_chunks(filing_id))

        assert result.embedded == 150
        assert result.remaining == 0
        assert embedding_provider.calls == [
            (90, EmbeddingRole.DOCUMENT),
            (60, EmbeddingRole.DOCUMENT),
        ]
        assert _run(store.pending_chunks(filing_id)) == []
        assert _run(store.get_filing(filing_id)).ingestion_status == S.READY

    def test_failure_keeps_written_vectors_and_retry_finishes(
        self, pipeline, store, embedding_provider,
    ):
        filing_id = _seed_chunked_filing(store, 150)
        embedding_provider.fail_on_call = 2

        with pytest.raises(EmbeddingError, match="provider unavailable"):
            _run(pipeline.embed_filing_chunks(filing_id))

        failed = _run(store.get_filing(filing_id))
        assert failed.ingestion_status == S.FAILED
        assert "provider unavailable" in failed.ingestion_error
        assert len(_run(store.pending_chunks(filing_id))) == 60

        embedding_provider.fail_on_call = None
        result = _run(pipeline.embed_filing_chunks(filing_id))

        assert result.embedded == 60
        assert result.remaining == 0
        stored = _run(store.get_filing(filing_id))
        assert stored.ingestion_status == S.READY
        assert stored.ingestion_error is None

    def test_failed_concurrent_batch_stops_its_siblings(self, store, blobs):
        class FirstCallFails:
            model = "first-call-fails"

            def __init__(self):
                self.calls = 0

            async def embed(self, texts, role):
                self.calls += 1
                if self.calls == 1:
                    raise RuntimeError("provider unavailable")
                await asyncio.sleep(0.05)
                return [[1.0] * 4 for _ in texts]

        concurrent = IngestionPipeline(
            store=store,
            blobs=blobs,
            extractor=TextExtractor(ocr_enabled=False),
            chunker=Chunker(chunk_size=1200, chunk_overlap=200),
            embedder=EmbeddingClient(
                FirstCallFails(), dimensions=4, batch_size=1, max_concurrency=3,
            ),
        )
        filing_id = _seed_chunked_filing(store, 3)

        async def embed_then_wait():
            with pytest.raises(EmbeddingError, match="provider unavailable"):
                await concurrent.embed_filing_chunks(filing_id)
            # Long enough for any surviving sibling batch to have written
            await asyncio.sleep(0.2)

        _run(embed_then_wait())

        assert _run(store.get_filing(filing_id)).ingestion_status == S.FAILED
        assert len(_run(store.pending_chunks(filing_id))) == 3

    def test_nothing_pending_on_ready_filing(self, pipeline, filing_service, store):
        filing = _upload(filing_service, b"Revenue grew 12% year over year.")
        _run(pipeline.ingest_filing(filing.id))

        result = _run(pipeline.embed_filing_chunks(filing.id))

        assert (result.embedded, result.remaining) == (0, 0)
        assert _run(store.get_filing(filing.id)).ingestion_status == S.READY

    def test_no_chunks_at_all_fails(self, pipeline, store):
        filing = _run(store.create_filing(user_id="user-a", title="Empty"))

        with pytest.raises(ChunkingError):
            _run(pipeline.embed_filing_chunks(filing.id))

        assert _run(store.get_filing(filing.id)).ingestion_status == S.FAILED

    def test_rejected_while_extracting(self, pipeline, store):
        filing_id = _seed_chunked_filing(store, 3)
        _run(store.update_filing(filing_id, ingestion_status=S.EXTRACTING))

        with pytest.raises(InvalidTransitionError):
            _run(pipeline.embed_filing_chunks(filing_id))

        assert _run(store.get_filing(filing_id)).ingestion_status == S.EXTRACTING
