# =============================================================================
# Filing Store — Structured Storage + Vector Search (Pluggable Backend)
# =============================================================================
#
# Everything the core persists goes through one FilingStore: filing rows,
# chunk rows with their embeddings, the owner-scoped similarity query and
# the (optional) question log.
#
# DESIGN DECISION: Protocol (structural typing) over ABC. Any class with
# the right coroutines works; the pipeline and the Q&A path never import
# SQLAlchemy.
#
# DESIGN DECISION: The store speaks plain dataclasses (FilingRecord,
# ChunkRecord, ScoredChunk), not ORM objects. ORM instances detached from
# their session are a lazy-load trap in async code, and the in-memory
# backend has no session at all.
#
# DESIGN DECISION: Similarity = 1 - cosine distance. pgvector's `<=>`
# returns cosine distance in [0, 2]; the floor `similarity >= min` becomes
# `distance <= 1 - min` so the HNSW index can still serve the ORDER BY.
#
# TENANT ISOLATION: search() filters on FilingChunk.user_id before any
# caller-supplied filter is applied. No filter value can widen the scope
# beyond the owner's own chunks.
#
# ARCHITECTURE:
#   FilingStore (Protocol)
#   ├── PgFilingStore      — PostgreSQL + pgvector, one session per call
#   └── MemoryFilingStore  — in-process dicts + numpy cosine (tests, demos)
# =============================================================================

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Protocol

import numpy as np
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from filing_rag.db.models import Filing, FilingChunk, IngestionStatus, QueryLog
from filing_rag.errors import FilingNotFoundError, StorageError

logger = logging.getLogger(__name__)

# Fields the pipeline may change on a filing; anything else is immutable
UPDATABLE_FILING_FIELDS = frozenset({
    "title",
    "content",
    "ingestion_status",
    "ingestion_error",
    "chunk_count",
    "extracted_at",
    "embedding_model",
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class FilingRecord:
    """Snapshot of one filing row."""

    id: str
    user_id: str
    title: str
    original_filename: str | None = None
    content_type: str | None = None
    storage_path: str | None = None
    content: str | None = None
    file_size: int | None = None
    ticker: str | None = None
    filing_type: str | None = None
    filing_date: date | None = None
    ingestion_status: IngestionStatus = IngestionStatus.UPLOADED
    ingestion_error: str | None = None
    chunk_count: int = 0
    extracted_at: datetime | None = None
    embedding_model: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class NewChunk:
    """A chunk about to be inserted; it has no id or embedding yet."""

    chunk_index: int
    content: str
    token_count: int
    page_number: int | None = None


@dataclass
class ChunkRecord:
    """Snapshot of one chunk row."""

    id: str
    filing_id: str
    user_id: str
    chunk_index: int
    content: str
    token_count: int
    page_number: int | None = None
    embedding: list[float] | None = None
    embedding_model: str | None = None
    embedded_at: datetime | None = None


@dataclass
class SearchFilters:
    """
    Normalised retrieval filters. None means "no constraint".

    Built by retrieval.normalize_filters(); stores trust the values as-is.
    """

    filing_ids: list[str] | None = None
    ticker: str | None = None  # case-insensitive substring
    filing_types: list[str] | None = None  # upper-cased
    date_from: date | None = None  # inclusive
    date_to: date | None = None  # inclusive


@dataclass
class ScoredChunk:
    """A chunk returned by similarity search, with its filing metadata."""

    chunk_id: str
    filing_id: str
    content: str
    similarity: float  # cosine similarity, higher = more relevant
    chunk_index: int
    page_number: int | None = None
    filing_title: str | None = None
    ticker: str | None = None
    filing_type: str | None = None
    filing_date: date | None = None


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class FilingStore(Protocol):
    """
    Protocol for the structured store.

    Every method is a coroutine and commits its own work; callers never
    manage transactions.
    """

    async def create_filing(
        self,
        *,
        user_id: str,
        title: str,
        original_filename: str | None = None,
        content_type: str | None = None,
        storage_path: str | None = None,
        file_size: int | None = None,
        ticker: str | None = None,
        filing_type: str | None = None,
        filing_date: date | None = None,
    ) -> FilingRecord:
        ...

    async def get_filing(self, filing_id: str) -> FilingRecord | None:
        ...

    async def list_filings(self, user_id: str) -> list[FilingRecord]:
        """Owner's filings, newest first."""
        ...

    async def delete_filing(self, filing_id: str) -> bool:
        """Delete a filing and (by cascade) its chunks. False if it was absent."""
        ...

    async def update_filing(self, filing_id: str, **fields: Any) -> FilingRecord:
        """
        Update whitelisted fields and return the new snapshot.

        Raises:
            FilingNotFoundError: If the filing does not exist.
        """
        ...

    async def replace_chunks(
        self,
        filing_id: str,
        user_id: str,
        chunks: Sequence[NewChunk],
    ) -> int:
        """Delete every chunk of the filing, then insert `chunks`, atomically."""
        ...

    async def list_chunks(self, filing_id: str) -> list[ChunkRecord]:
        ...

    async def pending_chunks(self, filing_id: str) -> list[ChunkRecord]:
        """Chunks with a NULL embedding, ordered by chunk_index."""
        ...

    async def count_chunks(self, filing_id: str) -> int:
        ...

    async def write_embedding(
        self,
        chunk_id: str,
        embedding: list[float],
        model: str,
        embedded_at: datetime,
    ) -> None:
        ...

    async def write_embeddings(
        self,
        embeddings: Sequence[tuple[str, list[float]]],
        model: str,
        embedded_at: datetime,
    ) -> None:
        """Write (chunk_id, vector) pairs for one batch in a single transaction."""
        ...

    async def count_embedded_chunks(self, user_id: str) -> int:
        ...

    async def search(
        self,
        user_id: str,
        query_vector: list[float],
        filters: SearchFilters,
        limit: int,
        min_similarity: float,
    ) -> list[ScoredChunk]:
        """Owner-scoped cosine search, most similar first."""
        ...

    async def log_query(
        self,
        *,
        user_id: str,
        question: str,
        answer: str,
        latency_ms: int,
        retrieved_count: int,
        model: str | None,
    ) -> None:
        ...


# ---------------------------------------------------------------------------
# Implementation 1: PostgreSQL + pgvector
# ---------------------------------------------------------------------------


class PgFilingStore:
    """
    pgvector-backed store.

    Each operation opens a short session and commits before returning, so
    status transitions are durable even when a later pipeline step fails.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StorageError(f"database operation failed: {exc}") from exc

    async def create_filing(self, *, user_id: str, title: str, **fields: Any) -> FilingRecord:
        async with self._session() as session:
            filing = Filing(
                user_id=user_id,
                title=title,
                ingestion_status=IngestionStatus.UPLOADED,
                chunk_count=0,
                **fields,
            )
            session.add(filing)
            await session.commit()
            await session.refresh(filing)
            logger.info("Created filing %s for user %s", filing.id, user_id)
            return _filing_record(filing)

    async def get_filing(self, filing_id: str) -> FilingRecord | None:
        async with self._session() as session:
            filing = await session.get(Filing, filing_id)
            return _filing_record(filing) if filing else None

    async def list_filings(self, user_id: str) -> list[FilingRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(Filing)
                .where(Filing.user_id == user_id)
                .order_by(Filing.created_at.desc())
            )
            return [_filing_record(f) for f in result.scalars().all()]

    async def delete_filing(self, filing_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(delete(Filing).where(Filing.id == filing_id))
            await session.commit()
            return result.rowcount > 0

    async def update_filing(self, filing_id: str, **fields: Any) -> FilingRecord:
        _check_updatable(fields)
        async with self._session() as session:
            filing = await session.get(Filing, filing_id)
            if filing is None:
                raise FilingNotFoundError(f"Filing {filing_id} not found")
            for name, value in fields.items():
                setattr(filing, name, value)
            await session.commit()
            await session.refresh(filing)
            return _filing_record(filing)

    async def replace_chunks(
        self,
        filing_id: str,
        user_id: str,
        chunks: Sequence[NewChunk],
    ) -> int:
        async with self._session() as session:
            await session.execute(
                delete(FilingChunk).where(FilingChunk.filing_id == filing_id)
            )
            session.add_all([
                FilingChunk(
                    filing_id=filing_id,
                    user_id=user_id,
                    chunk_index=chunk.chunk_index,
                    page_number=chunk.page_number,
                    content=chunk.content,
                    token_count=chunk.token_count,
                )
                for chunk in chunks
            ])
            await session.commit()

        logger.info("Replaced chunks of filing %s with %d new rows", filing_id, len(chunks))
        return len(chunks)

    async def list_chunks(self, filing_id: str) -> list[ChunkRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(FilingChunk)
                .where(FilingChunk.filing_id == filing_id)
                .order_by(FilingChunk.chunk_index)
            )
            return [_chunk_record(c) for c in result.scalars().all()]

    async def pending_chunks(self, filing_id: str) -> list[ChunkRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(FilingChunk)
                .where(
                    FilingChunk.filing_id == filing_id,
                    FilingChunk.embedding.is_(None),
                )
                .order_by(FilingChunk.chunk_index)
            )
            return [_chunk_record(c) for c in result.scalars().all()]

    async def count_chunks(self, filing_id: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(FilingChunk)
                .where(FilingChunk.filing_id == filing_id)
            )
            return int(result.scalar_one())

    async def write_embedding(
        self,
        chunk_id: str,
        embedding: list[float],
        model: str,
        embedded_at: datetime,
    ) -> None:
        async with self._session() as session:
            await session.execute(
                update(FilingChunk)
                .where(FilingChunk.id == chunk_id)
                .values(
                    embedding=embedding,
                    embedding_model=model,
                    embedded_at=embedded_at,
                )
            )
            await session.commit()

    async def write_embeddings(
        self,
        embeddings: Sequence[tuple[str, list[float]]],
        model: str,
        embedded_at: datetime,
    ) -> None:
        if not embeddings:
            return
        # ORM bulk UPDATE by primary key: one executemany per batch
        async with self._session() as session:
            await session.execute(
                update(FilingChunk),
                [
                    {
                        "id": chunk_id,
                        "embedding": embedding,
                        "embedding_model": model,
                        "embedded_at": embedded_at,
                    }
                    for chunk_id, embedding in embeddings
                ],
            )
            await session.commit()

    async def count_embedded_chunks(self, user_id: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(FilingChunk)
                .where(
                    FilingChunk.user_id == user_id,
                    FilingChunk.embedding.is_not(None),
                )
            )
            return int(result.scalar_one())

    async def search(
        self,
        user_id: str,
        query_vector: list[float],
        filters: SearchFilters,
        limit: int,
        min_similarity: float,
    ) -> list[ScoredChunk]:
        distance = FilingChunk.embedding.cosine_distance(query_vector)

        stmt = (
            select(
                FilingChunk,
                Filing.title,
                Filing.ticker,
                Filing.filing_type,
                Filing.filing_date,
                distance.label("distance"),
            )
            .join(Filing, Filing.id == FilingChunk.filing_id)
            .where(
                FilingChunk.user_id == user_id,
                FilingChunk.embedding.is_not(None),
                distance <= 1.0 - min_similarity,
            )
        )

        if filters.filing_ids:
            stmt = stmt.where(FilingChunk.filing_id.in_(filters.filing_ids))
        if filters.ticker:
            stmt = stmt.where(Filing.ticker.icontains(filters.ticker, autoescape=True))
        if filters.filing_types:
            stmt = stmt.where(func.upper(Filing.filing_type).in_(filters.filing_types))
        if filters.date_from:
            stmt = stmt.where(Filing.filing_date >= filters.date_from)
        if filters.date_to:
            stmt = stmt.where(Filing.filing_date <= filters.date_to)

        stmt = stmt.order_by(distance).limit(limit)

        async with self._session() as session:
            rows = (await session.execute(stmt)).all()

        logger.debug(
            "Vector search returned %d rows (user=%s, limit=%d)",
            len(rows), user_id, limit,
        )

        return [
            ScoredChunk(
                chunk_id=chunk.id,
                filing_id=chunk.filing_id,
                content=chunk.content,
                similarity=round(1.0 - float(dist), 4),
                chunk_index=chunk.chunk_index,
                page_number=chunk.page_number,
                filing_title=title,
                ticker=ticker,
                filing_type=filing_type,
                filing_date=filing_date,
            )
            for chunk, title, ticker, filing_type, filing_date, dist in rows
        ]

    async def log_query(
        self,
        *,
        user_id: str,
        question: str,
        answer: str,
        latency_ms: int,
        retrieved_count: int,
        model: str | None,
    ) -> None:
        async with self._session() as session:
            session.add(QueryLog(
                user_id=user_id,
                question=question,
                answer=answer,
                latency_ms=latency_ms,
                retrieved_count=retrieved_count,
                model=model,
            ))
            await session.commit()


# ---------------------------------------------------------------------------
# Implementation 2: In-Memory
# ---------------------------------------------------------------------------


class MemoryFilingStore:
    """
    Process-local store for tests and single-process demos.

    Returns copies of its records so callers cannot mutate stored state
    behind the store's back. State is not shared with Celery workers.
    """

    def __init__(self) -> None:
        self.filings: dict[str, FilingRecord] = {}
        self.chunks: dict[str, ChunkRecord] = {}
        self.query_logs: list[dict[str, Any]] = []

    async def create_filing(self, *, user_id: str, title: str, **fields: Any) -> FilingRecord:
        now = _utcnow()
        record = FilingRecord(
            id=_new_id(),
            user_id=user_id,
            title=title,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.filings[record.id] = record
        return dataclasses.replace(record)

    async def get_filing(self, filing_id: str) -> FilingRecord | None:
        record = self.filings.get(filing_id)
        return dataclasses.replace(record) if record else None

    async def list_filings(self, user_id: str) -> list[FilingRecord]:
        owned = [f for f in self.filings.values() if f.user_id == user_id]
        owned.sort(key=lambda f: f.created_at or _utcnow(), reverse=True)
        return [dataclasses.replace(f) for f in owned]

    async def delete_filing(self, filing_id: str) -> bool:
        if self.filings.pop(filing_id, None) is None:
            return False
        self.chunks = {k: c for k, c in self.chunks.items() if c.filing_id != filing_id}
        return True

    async def update_filing(self, filing_id: str, **fields: Any) -> FilingRecord:
        _check_updatable(fields)
        record = self.filings.get(filing_id)
        if record is None:
            raise FilingNotFoundError(f"Filing {filing_id} not found")
        for name, value in fields.items():
            setattr(record, name, value)
        record.updated_at = _utcnow()
        return dataclasses.replace(record)

    async def replace_chunks(
        self,
        filing_id: str,
        user_id: str,
        chunks: Sequence[NewChunk],
    ) -> int:
        self.chunks = {k: c for k, c in self.chunks.items() if c.filing_id != filing_id}
        for chunk in chunks:
            record = ChunkRecord(
                id=_new_id(),
                filing_id=filing_id,
                user_id=user_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                token_count=chunk.token_count,
                page_number=chunk.page_number,
            )
            self.chunks[record.id] = record
        return len(chunks)

    async def list_chunks(self, filing_id: str) -> list[ChunkRecord]:
        owned = [c for c in self.chunks.values() if c.filing_id == filing_id]
        return [dataclasses.replace(c) for c in sorted(owned, key=lambda c: c.chunk_index)]

    async def pending_chunks(self, filing_id: str) -> list[ChunkRecord]:
        return [c for c in await self.list_chunks(filing_id) if c.embedding is None]

    async def count_chunks(self, filing_id: str) -> int:
        return sum(1 for c in self.chunks.values() if c.filing_id == filing_id)

    async def write_embedding(
        self,
        chunk_id: str,
        embedding: list[float],
        model: str,
        embedded_at: datetime,
    ) -> None:
        record = self.chunks.get(chunk_id)
        if record is None:
            return
        record.embedding = list(embedding)
        record.embedding_model = model
        record.embedded_at = embedded_at

    async def write_embeddings(
        self,
        embeddings: Sequence[tuple[str, list[float]]],
        model: str,
        embedded_at: datetime,
    ) -> None:
        for chunk_id, embedding in embeddings:
            await self.write_embedding(chunk_id, embedding, model, embedded_at)

    async def count_embedded_chunks(self, user_id: str) -> int:
        return sum(
            1 for c in self.chunks.values()
            if c.user_id == user_id and c.embedding is not None
        )

    async def search(
        self,
        user_id: str,
        query_vector: list[float],
        filters: SearchFilters,
        limit: int,
        min_similarity: float,
    ) -> list[ScoredChunk]:
        query = np.asarray(query_vector, dtype=np.float64)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        scored: list[ScoredChunk] = []
        for chunk in self.chunks.values():
            if chunk.user_id != user_id or chunk.embedding is None:
                continue
            filing = self.filings.get(chunk.filing_id)
            if filing is None or not _matches(filing, filters):
                continue

            vector = np.asarray(chunk.embedding, dtype=np.float64)
            norm = np.linalg.norm(vector)
            if norm == 0:
                continue
            similarity = float(np.dot(query, vector) / (query_norm * norm))
            if similarity < min_similarity:
                continue

            scored.append(ScoredChunk(
                chunk_id=chunk.id,
                filing_id=chunk.filing_id,
                content=chunk.content,
                similarity=round(similarity, 4),
                chunk_index=chunk.chunk_index,
                page_number=chunk.page_number,
                filing_title=filing.title,
                ticker=filing.ticker,
                filing_type=filing.filing_type,
                filing_date=filing.filing_date,
            ))

        scored.sort(key=lambda s: (-s.similarity, s.filing_id, s.chunk_index))
        return scored[:limit]

    async def log_query(
        self,
        *,
        user_id: str,
        question: str,
        answer: str,
        latency_ms: int,
        retrieved_count: int,
        model: str | None,
    ) -> None:
        self.query_logs.append({
            "user_id": user_id,
            "question": question,
            "answer": answer,
            "latency_ms": latency_ms,
            "retrieved_count": retrieved_count,
            "model": model,
            "created_at": _utcnow(),
        })


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _new_id() -> str:
    return str(uuid.uuid4())


def _check_updatable(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FILING_FIELDS
    if unknown:
        raise ValueError(f"Cannot update filing fields: {sorted(unknown)}")


def _matches(filing: FilingRecord, filters: SearchFilters) -> bool:
    if filters.filing_ids and filing.id not in filters.filing_ids:
        return False
    if filters.ticker and filters.ticker.lower() not in (filing.ticker or "").lower():
        return False
    if filters.filing_types and (filing.filing_type or "").upper() not in filters.filing_types:
        return False
    if filters.date_from and (filing.filing_date is None or filing.filing_date < filters.date_from):
        return False
    if filters.date_to and (filing.filing_date is None or filing.filing_date > filters.date_to):
        return False
    return True


def _filing_record(filing: Filing) -> FilingRecord:
    return FilingRecord(
        id=filing.id,
        user_id=filing.user_id,
        title=filing.title,
        original_filename=filing.original_filename,
        content_type=filing.content_type,
        storage_path=filing.storage_path,
        content=filing.content,
        file_size=filing.file_size,
        ticker=filing.ticker,
        filing_type=filing.filing_type,
        filing_date=filing.filing_date,
        ingestion_status=filing.ingestion_status,
        ingestion_error=filing.ingestion_error,
        chunk_count=filing.chunk_count,
        extracted_at=filing.extracted_at,
        embedding_model=filing.embedding_model,
        created_at=filing.created_at,
        updated_at=filing.updated_at,
    )


def _chunk_record(chunk: FilingChunk) -> ChunkRecord:
    return ChunkRecord(
        id=chunk.id,
        filing_id=chunk.filing_id,
        user_id=chunk.user_id,
        chunk_index=chunk.chunk_index,
        content=chunk.content,
        token_count=chunk.token_count,
        page_number=chunk.page_number,
        embedding=list(chunk.embedding) if chunk.embedding is not None else None,
        embedding_model=chunk.embedding_model,
        embedded_at=chunk.embedded_at,
    )


def create_filing_store(backend: str, session_factory=None) -> PgFilingStore | MemoryFilingStore:
    """
    Factory for the configured store backend.

    - "postgres" → PgFilingStore (requires a session factory)
    - "memory" → MemoryFilingStore
    """
    if backend == "memory":
        logger.info("Using in-memory filing store")
        return MemoryFilingStore()
    if backend == "postgres":
        if session_factory is None:
            raise ValueError("PgFilingStore needs a session factory")
        logger.info("Using pgvector filing store")
        return PgFilingStore(session_factory)
    raise ValueError(f"Unknown store backend '{backend}'. Supported: 'postgres', 'memory'")
