# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
#
# DESIGN DECISION: Filters are loosely typed on purpose. A malformed filter
# value must mean "no constraint" (normalised in services/retrieval.py),
# not a 422 that blocks the question. Only the question itself is strict.
#
# Uploads are multipart forms, so POST /filings takes Form/File parameters
# instead of a body model.
# =============================================================================

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AskFilters(BaseModel):
    """Optional retrieval filters; every field may be omitted."""

    filing_ids: Any | None = Field(
        default=None,
        description="Restrict retrieval to these filing ids (must be your own).",
    )
    ticker: Any | None = Field(
        default=None,
        description="Case-insensitive ticker substring, e.g. 'aapl'.",
    )
    filing_types: Any | None = Field(
        default=None,
        description="Filing type allowlist, e.g. ['10-K', '10-Q'].",
    )
    date_from: Any | None = Field(
        default=None,
        description="Inclusive lower bound on the filing date (ISO 8601).",
    )
    date_to: Any | None = Field(
        default=None,
        description="Inclusive upper bound on the filing date (ISO 8601).",
    )

    model_config = ConfigDict(extra="ignore")


class AskRequest(BaseModel):
    """
    Request body for POST /ask.

    Example:
        {
            "question": "What happened to revenue?",
            "filters": {"ticker": "ACME", "filing_types": ["10-K"]}
        }
    """

    question: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="The question to answer from your filings",
        examples=["What happened to revenue?"],
    )
    filters: AskFilters | None = Field(default=None)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"question": "What happened to revenue?"},
                {
                    "question": "What are the main risk factors?",
                    "filters": {"ticker": "ACME", "date_from": "2024-01-01"},
                },
            ]
        }
    )
