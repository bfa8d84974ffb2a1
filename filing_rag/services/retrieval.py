# =============================================================================
# Retrieval Engine — Owner-Scoped Filtered Similarity Search
# =============================================================================
#
# question → query-role embedding → FilingStore.search(owner, vector,
# filters, top_k, min_similarity) → ranked ScoredChunk list
#
# FILTER NORMALISATION: Filters arrive from HTTP bodies and are untrusted.
# Every field is optional, and a missing OR malformed value means "no
# constraint", never "match nothing":
#   filing_ids    → trimmed strings (ints accepted), duplicates dropped
#   ticker        → upper-cased, matched as a case-insensitive substring
#   filing_types  → upper-cased allowlist
#   date_from/to  → ISO dates or datetimes, truncated to the day; an
#                   inverted range is swapped
#
# An empty result is not an error. The caller tells "no embedded filings"
# apart from "nothing relevant" (see qa.py).
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from filing_rag.errors import AuthorizationError, RetrievalError
from filing_rag.services.embedder import EmbeddingClient
from filing_rag.services.store import FilingStore, ScoredChunk, SearchFilters

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Filter Normalisation
# ---------------------------------------------------------------------------


def normalize_filters(raw: Mapping[str, Any] | None) -> SearchFilters:
    """Turn a loosely-typed filter mapping into SearchFilters."""
    if not raw:
        return SearchFilters()

    date_from = _parse_day(raw.get("date_from"))
    date_to = _parse_day(raw.get("date_to"))
    if date_from and date_to and date_from > date_to:
        date_from, date_to = date_to, date_from

    ticker = raw.get("ticker")
    ticker = ticker.strip().upper() if isinstance(ticker, str) else None

    return SearchFilters(
        filing_ids=_normalize_ids(raw.get("filing_ids")),
        ticker=ticker or None,
        filing_types=_normalize_types(raw.get("filing_types")),
        date_from=date_from,
        date_to=date_to,
    )


def _normalize_ids(value: Any) -> list[str] | None:
    if isinstance(value, (str, int)):
        value = [value]
    if not isinstance(value, Iterable):
        return None

    ids: list[str] = []
    for item in value:
        if isinstance(item, bool):
            continue
        if isinstance(item, int):
            item = str(item)
        if isinstance(item, str) and item.strip() and item.strip() not in ids:
            ids.append(item.strip())
    return ids or None


def _normalize_types(value: Any) -> list[str] | None:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, Iterable):
        return None
    types = [v.strip().upper() for v in value if isinstance(v, str) and v.strip()]
    return list(dict.fromkeys(types)) or None


def _parse_day(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip()).date()
    except ValueError:
        logger.debug("Ignoring unparseable date filter %r", value)
        return None


# ---------------------------------------------------------------------------
# Retrieval Engine
# ---------------------------------------------------------------------------


class RetrievalEngine:
    """Embeds a question and runs the owner-scoped similarity search."""

    def __init__(
        self,
        store: FilingStore,
        embedder: EmbeddingClient,
        top_k: int = 12,
        min_similarity: float = 0.1,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.top_k = top_k
        self.min_similarity = min_similarity

    async def retrieve(
        self,
        user_id: str,
        question: str,
        filters: SearchFilters | Mapping[str, Any] | None = None,
        top_k: int | None = None,
    ) -> list[ScoredChunk]:
        """
        Return the caller's chunks most similar to the question.

        Raises:
            AuthorizationError: If no user id is supplied.
            EmbeddingError: If the question cannot be embedded.
            RetrievalError: If the similarity search fails.
        """
        if not user_id:
            raise AuthorizationError("retrieval requires an owner id")

        if not isinstance(filters, SearchFilters):
            filters = normalize_filters(filters)
        limit = top_k or self.top_k

        query_vector = await self.embedder.embed_query(question)

        try:
            results = await self.store.search(
                user_id, query_vector, filters, limit, self.min_similarity,
            )
        except Exception as exc:
            raise RetrievalError(f"similarity search failed: {exc}") from exc

        logger.info(
            "Retrieved %d chunks for user %s (top_k=%d, min_similarity=%.2f)",
            len(results), user_id, limit, self.min_similarity,
        )
        return results
