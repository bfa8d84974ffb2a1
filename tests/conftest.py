# =============================================================================
# Shared Test Fixtures — Deterministic Fakes, No External Services
# =============================================================================
#
# Every test runs without network, database or API keys:
#   - MemoryFilingStore instead of PostgreSQL + pgvector
#   - LocalBlobStore rooted in pytest's tmp_path
#   - HashingEmbeddingProvider: bag-of-words vectors hashed into a fixed
#     dimension, so texts sharing words have positive cosine similarity
#   - EchoLLM: answers by echoing the context it was given, plus [chunk-id]
#     markers, so grounded facts appear in the answer verbatim
# =============================================================================

from __future__ import annotations

import hashlib
import re

import fitz  # PyMuPDF
import pytest

from filing_rag.services.blobstore import LocalBlobStore
from filing_rag.services.chunker import Chunker
from filing_rag.services.embedder import EmbeddingClient, EmbeddingRole
from filing_rag.services.extractor import TextExtractor
from filing_rag.services.filings import FilingService
from filing_rag.services.llm import LLMResponse
from filing_rag.services.pipeline import IngestionPipeline
from filing_rag.services.store import MemoryFilingStore

DIMENSIONS = 256

_TOKEN = re.compile(r"[a-z0-9]+")


class HashingEmbeddingProvider:
    """Deterministic embeddings; optionally fails on the N-th call."""

    model = "fake-hashing-embedder"

    def __init__(self, dimensions: int = DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.calls: list[tuple[int, EmbeddingRole]] = []
        self.fail_on_call: int | None = None

    async def embed(self, texts: list[str], role: EmbeddingRole) -> list[list[float]]:
        self.calls.append((len(texts), role))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise RuntimeError("provider unavailable")
        return [self.vector(text) for text in texts]

    def vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in _TOKEN.findall(text.lower()):
            slot = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimensions
            vector[slot] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector


class EchoLLM:
    """Answers with the chunk contents it was shown and cites every chunk id."""

    model = "fake-echo-llm"

    def __init__(self) -> None:
        self.calls: list[dict] = []

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        self.calls.append({"messages": messages, "system": system})
        prompt = messages[-1]["content"]
        chunk_ids = re.findall(r"ID: (\S+)", prompt)
        context = prompt.split("Context Chunks:\n", 1)[1].split("\n\nInstructions:", 1)[0]
        lines = [
            line for line in context.splitlines()
            if line and not line.startswith("Chunk ")
        ]
        answer = " ".join(lines) + " " + " ".join(f"[{cid}]" for cid in chunk_ids)
        return LLMResponse(
            content=answer,
            model=self.model,
            input_tokens=len(prompt) // 4,
            output_tokens=len(answer) // 4,
        )


def build_pdf(pages: list[str]) -> bytes:
    """One PDF page per entry; an empty string yields a page with no text layer."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text, fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture
def embedding_provider() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider()


@pytest.fixture
def llm() -> EchoLLM:
    return EchoLLM()


@pytest.fixture
def store() -> MemoryFilingStore:
    return MemoryFilingStore()


@pytest.fixture
def blobs(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def embedder(embedding_provider) -> EmbeddingClient:
    return EmbeddingClient(embedding_provider, dimensions=DIMENSIONS, batch_size=90)


@pytest.fixture
def pipeline(store, blobs, embedder) -> IngestionPipeline:
    return IngestionPipeline(
        store=store,
        blobs=blobs,
        extractor=TextExtractor(ocr_enabled=False),
        chunker=Chunker(chunk_size=1200, chunk_overlap=200),
        embedder=embedder,
    )


@pytest.fixture
def filing_service(store, blobs) -> FilingService:
    return FilingService(store, blobs)
