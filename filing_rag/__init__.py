# =============================================================================
# Filing Q&A — ingestion pipeline + retrieval-augmented answering core
# =============================================================================
# Ingests financial filings (PDF / plain text), chunks and embeds them, and
# answers questions from the most similar chunks with bound citations.
#
# Package structure:
#   filing_rag/
#   ├── api/          → FastAPI route handlers (filings, ingest, embed, ask)
#   ├── db/           → Async SQLAlchemy engine and ORM models (pgvector)
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Extractor, chunker, embedder, ingestion pipeline,
#   │                    retrieval, answer synthesis, stores, DI container
#   └── workers/      → Celery app and the background ingestion task
# =============================================================================
