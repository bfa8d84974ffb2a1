# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Thin adapters over the core; no business logic lives here.
#   - deps.py: caller identity (X-User-Id) and the DI container dependency
#   - filings.py: upload, list, delete, ingest and embed filings
#   - ask.py: question answering with citations
# Error → HTTP status mapping lives in filing_rag/main.py.
# =============================================================================
