# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Defines request/response schemas for the API.
# These are SEPARATE from the database models (filing_rag/db/models.py) and
# from the core's dataclasses (filing_rag/services/store.py): clients never
# see embedding vectors, storage paths or raw extracted text.
# =============================================================================
