# =============================================================================
# Ask API — Cited Question Answering
# =============================================================================
#
# POST /ask runs QAService.ask_question for the calling user:
#   ownership check → embedded-chunk count → retrieval → synthesis → log
#
# Not-an-error outcomes return 200 with `guidance` set:
#   - the user has no embedded filings yet
#   - nothing in the user's filings matched the question
# Failures map through the handlers in main.py (403/404 ownership,
# 502 embedding/LLM provider, 503 vector search).
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from filing_rag.api.deps import get_current_user_id, get_services
from filing_rag.models.requests import AskRequest
from filing_rag.models.responses import AskDebug, AskResponse, CitationResponse
from filing_rag.services.container import Container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Question Answering"])


@router.post(
    "/ask",
    response_model=AskResponse,
    summary="Ask a question about your filings",
    description=(
        "Retrieves the most similar chunks from your own embedded filings "
        "and answers from them only. Every retrieved chunk is returned as a "
        "citation."
    ),
)
async def ask_endpoint(
    request: AskRequest,
    user_id: str = Depends(get_current_user_id),
    services: Container = Depends(get_services),
) -> AskResponse:
    question = request.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="question is required")

    logger.info("Ask request: user=%s, question='%s'", user_id, question[:80])

    filters = request.filters.model_dump(exclude_none=True) if request.filters else None
    result = await services.qa.ask_question(user_id, question, filters)

    return AskResponse(
        answer=result.answer,
        citations=[CitationResponse.model_validate(c) for c in result.citations],
        guidance=result.guidance,
        debug=AskDebug(
            model=result.model,
            embedded_chunk_count=result.embedded_chunk_count,
            retrieved_count=result.retrieved_count,
            latency_ms=result.latency_ms,
        ),
    )
