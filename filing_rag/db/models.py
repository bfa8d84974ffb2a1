# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌────────────────────┐       ┌──────────────────────────────────┐
# │  filings           │       │  filing_chunks                   │
# ├────────────────────┤       ├──────────────────────────────────┤
# │ id (PK, uuid)      │──1:N─▶│ id (PK, uuid)                    │
# │ user_id            │       │ filing_id (FK → filings.id)      │
# │ title              │       │ user_id (denormalised owner)     │
# │ original_filename  │       │ chunk_index (0..N-1)             │
# │ content_type       │       │ page_number (approximate)        │
# │ storage_path       │       │ content (text)                   │
# │ content (text)     │       │ token_count (estimate)           │
# │ file_size          │       │ embedding (vector(1024))         │
# │ ticker / type/date │       │ embedding_model / embedded_at    │
# │ ingestion_status   │       │ created_at                       │
# │ ingestion_error    │       └──────────────────────────────────┘
# │ chunk_count        │
# │ extracted_at       │       ┌──────────────────────────────────┐
# │ embedding_model    │       │  query_logs (observability only) │
# │ created/updated_at │       └──────────────────────────────────┘
# └────────────────────┘
#
# DESIGN DECISIONS:
#
# 1. `user_id` is copied onto every chunk so similarity search can filter
#    by owner without a join. Tenant isolation is enforced on that column.
#
# 2. Chunks are never diffed: every ingestion run deletes all chunks of the
#    filing and inserts fresh ones with NULL embeddings. Stale chunk /
#    stale embedding mismatches are impossible, at the cost of re-embedding.
#
# 3. `ingestion_status` is a closed enum. Writes go through
#    filing_rag.services.status.transition(), never free-form strings.
# =============================================================================

import enum
import uuid
from datetime import date, datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from filing_rag.config import settings


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class IngestionStatus(str, enum.Enum):
    """
    Per-filing ingestion progress.

    State machine:
        uploaded → extracting → chunked → embedding → ready
            └────────────┴───────────┴──────────┴──────→ failed

    `ready` is terminal success. `failed` is terminal for one attempt but
    recoverable: ingestion restarts from extraction, or the embedding
    sub-flow can be retried on its own.
    """

    UPLOADED = "uploaded"
    EXTRACTING = "extracting"
    CHUNKED = "chunked"
    EMBEDDING = "embedding"
    READY = "ready"
    FAILED = "failed"


class Filing(Base):
    """One uploaded financial document."""

    __tablename__ = "filings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    # Owner from the external auth layer
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    original_filename: Mapped[str | None] = mapped_column(String(500), nullable=True)
    content_type: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Pointer into the blob store; required to start ingestion
    storage_path: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Raw extracted text; non-null once status is chunked/embedding/ready
    content: Mapped[str | None] = mapped_column(Text, nullable=True)

    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Optional filing metadata used by retrieval filters and citations
    ticker: Mapped[str | None] = mapped_column(String(20), nullable=True)
    filing_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    filing_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    ingestion_status: Mapped[IngestionStatus] = mapped_column(
        Enum(IngestionStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=IngestionStatus.UPLOADED,
    )

    # Set only when ingestion_status == failed
    ingestion_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    extracted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    embedding_model: Mapped[str | None] = mapped_column(String(200), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # passive_deletes: the FK's ON DELETE CASCADE removes chunks in the
    # database; the ORM never loads thousands of chunk rows just to delete them.
    chunks: Mapped[list["FilingChunk"]] = relationship(
        "FilingChunk",
        back_populates="filing",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )

    def __repr__(self) -> str:
        return (
            f"<Filing(id={self.id}, title='{self.title}', "
            f"status={self.ingestion_status})>"
        )


class FilingChunk(Base):
    """One unit of embedded filing text, the unit of retrieval."""

    __tablename__ = "filing_chunks"
    __table_args__ = (
        UniqueConstraint("filing_id", "chunk_index", name="uq_filing_chunk_index"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    filing_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("filings.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Denormalised from the filing for owner-scoped search
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    page_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False)

    # NULL until the embedding sub-flow writes it back
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )
    embedding_model: Mapped[str | None] = mapped_column(String(200), nullable=True)
    embedded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    filing: Mapped["Filing"] = relationship("Filing", back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<FilingChunk(id={self.id}, filing_id={self.filing_id}, "
            f"index={self.chunk_index}, tokens={self.token_count})>"
        )


class QueryLog(Base):
    """
    One question/answer exchange.

    Observability only: nothing in the core reads these rows back.
    """

    __tablename__ = "query_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    retrieved_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    model: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


# =============================================================================
# Database Indexes
# =============================================================================
#
# HNSW with `vector_cosine_ops`: the similarity metric is cosine, so the
# index must be built with the matching operator class or Postgres falls
# back to a sequential scan.
# =============================================================================

filing_chunk_embedding_idx = Index(
    "idx_filing_chunk_embedding_hnsw",
    FilingChunk.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)

# Owner-scoped search and per-user embedded-chunk counts
filing_chunk_user_idx = Index(
    "idx_filing_chunk_user_id",
    FilingChunk.user_id,
)

filing_user_created_idx = Index(
    "idx_filing_user_created",
    Filing.user_id,
    Filing.created_at,
)

query_log_user_created_idx = Index(
    "idx_query_log_user_created",
    QueryLog.user_id,
    QueryLog.created_at,
)
