# =============================================================================
# Database Package
# =============================================================================
# Provides the async SQLAlchemy engine, session management, and ORM models.
#
# Key exports:
#   - get_async_session_factory: pooled session factory for the API process
#   - create_worker_session_factory: loop-local factory for Celery tasks
#   - Base: SQLAlchemy declarative base for ORM models
#   - Filing, FilingChunk, QueryLog: ORM models for filings and their chunks
# =============================================================================
