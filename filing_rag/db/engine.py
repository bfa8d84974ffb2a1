# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# DESIGN DECISION: Async SQLAlchemy everywhere.
# The whole core is single-threaded async I/O: FastAPI handlers and the
# ingestion pipeline await every database round trip through `asyncpg`.
#
# TWO SESSION FACTORIES:
# 1. API process (get_async_session_factory): one pooled engine for the
#    lifetime of the process, bound to uvicorn's event loop.
# 2. Celery workers (create_worker_session_factory): each task runs its own
#    `asyncio.run(...)` loop. Pooled asyncpg connections are tied to the loop
#    that opened them, so workers get an engine with NullPool that is
#    disposed when the task finishes.
#
# COMMIT POLICY:
# PgFilingStore opens a short session per store operation and commits it
# before returning. Status transitions are therefore durable immediately,
# even if a later pipeline step raises.
# =============================================================================

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from filing_rag.config import settings

# ---------------------------------------------------------------------------
# Process-wide Engine (Lazy Initialization)
# ---------------------------------------------------------------------------
# Lazy so that importing the package (tests, memory backend) never needs a
# reachable database or a configured driver.
#
# - pool_size=5 / max_overflow=10: fine for a single API replica.
# - expire_on_commit=False: attributes stay readable after commit without a
#   lazy refresh, which would fail outside the session in async code.
# ---------------------------------------------------------------------------

_async_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_async_engine() -> AsyncEngine:
    """Lazily create and cache the pooled async engine."""
    global _async_engine
    if _async_engine is None:
        _async_engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
        )
    return _async_engine


def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Lazily create and cache the session factory bound to the pooled engine."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            bind=get_async_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_factory


def create_worker_session_factory() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Build a loop-local engine and session factory for one Celery task.

    The caller must `await engine.dispose()` when the task's event loop ends.
    """
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        poolclass=NullPool,
    )
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, factory
