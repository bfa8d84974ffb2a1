# =============================================================================
# API Dependencies — Caller Identity + Service Container
# =============================================================================
#
# DESIGN DECISION: FastAPI dependencies (not middleware). Each route opts in
# via Depends(), and tests replace either piece through
# app.dependency_overrides.
#
# Authentication is an external collaborator: an upstream gateway verifies
# the session and forwards the user id in the X-User-Id header. This layer
# only insists that the header is present. Every ownership check downstream
# keys off this value.
# =============================================================================

from __future__ import annotations

from fastapi import Header, HTTPException

from filing_rag.services.container import Container, get_container


async def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> str:
    """
    Resolve the calling user.

    Raises:
        HTTPException 401: Missing or blank X-User-Id header.
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Provide the 'X-User-Id' header.",
        )
    return x_user_id.strip()


def get_services() -> Container:
    """The process-wide component container."""
    return get_container()
