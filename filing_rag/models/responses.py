# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
#
# DESIGN DECISION: Separate response models from the core's records.
# FilingRecord carries the storage path and the full extracted text;
# neither belongs on the wire. `from_attributes=True` lets routes return
# the dataclasses directly and FastAPI keeps only the declared fields.
# =============================================================================

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from filing_rag.db.models import IngestionStatus


class HealthResponse(BaseModel):
    """Response for GET /health; confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class FilingResponse(BaseModel):
    """Filing metadata and ingestion progress."""

    id: str
    title: str
    original_filename: str | None = None
    content_type: str | None = None
    file_size: int | None = None
    ticker: str | None = None
    filing_type: str | None = None
    filing_date: date | None = None
    ingestion_status: IngestionStatus
    ingestion_error: str | None = Field(
        default=None,
        description="Failure message; set only when ingestion_status is 'failed'",
    )
    chunk_count: int
    extracted_at: datetime | None = None
    embedding_model: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class IngestResponse(BaseModel):
    """
    Response for POST /filings/{id}/ingest.

    `queued` means a Celery worker will run the pipeline; poll
    GET /filings until the status is `ready` or `failed`.
    """

    filing_id: str
    status: Literal["success", "noop", "queued"]
    chunks: int = 0
    embedded: int = 0
    task_id: str | None = None


class UploadResponse(BaseModel):
    """Response for POST /filings: the new filing plus the ingestion trigger."""

    filing: FilingResponse
    ingestion: IngestResponse


class EmbedResponse(BaseModel):
    """Response for POST /filings/{id}/embed."""

    filing_id: str
    embedded: int
    remaining: int


class CitationResponse(BaseModel):
    """
    One retrieved chunk the answer was grounded on.

    Always the full retrieved set, even if the model's prose did not cite
    every chunk id.
    """

    chunk_id: str
    filing_id: str
    similarity: float = Field(description="Cosine similarity, higher = more relevant")
    snippet: str = Field(description="First 280 characters of the chunk")
    ticker: str | None = None
    filing_type: str | None = None
    filing_date: date | None = None

    model_config = ConfigDict(from_attributes=True)


class AskDebug(BaseModel):
    model: str | None = None
    embedded_chunk_count: int
    retrieved_count: int
    latency_ms: int


class AskResponse(BaseModel):
    """
    Response for POST /ask.

    `guidance` is set when no grounded answer was possible: either the user
    has no embedded filings yet, or nothing matched the question.
    """

    answer: str
    citations: list[CitationResponse]
    guidance: str | None = None
    debug: AskDebug
