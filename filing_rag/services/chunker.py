# =============================================================================
# Character Chunker — Sliding Window + Noise-Filter Policies
# =============================================================================
#
# Splits extracted filing text into overlapping fixed-size windows and drops
# windows that are noise (binary residue, page furniture, number soup).
#
# ALGORITHM:
# 1. Normalise: collapse every whitespace run to one space, trim
# 2. Slide a window of chunk_size characters, advancing by
#    (chunk_size - chunk_overlap); the last window may be shorter
# 3. Run the ordered filter policies: the first policy that keeps at least
#    one window wins (STRICT, then RELAXED)
# 4. Re-index survivors 0..N-1
#
# DESIGN DECISION: Characters, not tokens. The token count is only an
# estimate (len / 4) that feeds batch sizing, so a real tokenizer buys
# nothing here and the window boundaries stay trivially reproducible.
#
# DESIGN DECISION: Noise thresholds are an explicit ordered list of
# ChunkFilterPolicy objects rather than nested conditionals. Dense numeric
# tables fail STRICT's alphabetic floor; RELAXED still keeps them queryable
# instead of failing the whole filing with zero chunks.
# =============================================================================

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from filing_rag.services.extractor import BINARY_MARKER_PATTERN

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class TextChunk:
    """A single window of normalised text, ready to persist and embed."""

    index: int  # 0-based, contiguous after filtering
    content: str
    token_estimate: int
    start: int  # character offset into the normalised text


@dataclass(frozen=True)
class ChunkFilterPolicy:
    """
    One tier of noise filtering.

    A window is kept when it is at least `min_length` characters, has at
    least `min_alpha` alphabetic characters, has an (alpha + digit) / length
    ratio of at least `min_alnum_ratio`, and (optionally) contains no PDF
    structural markers.
    """

    name: str
    min_length: int = 0
    min_alpha: int = 0
    min_alnum_ratio: float = 0.0
    reject_binary_markers: bool = True

    def accepts(self, content: str) -> bool:
        length = len(content)
        if length == 0 or length < self.min_length:
            return False
        if self.reject_binary_markers and BINARY_MARKER_PATTERN.search(content):
            return False

        alpha = sum(1 for ch in content if ch.isalpha())
        if alpha < self.min_alpha:
            return False

        digits = sum(1 for ch in content if ch.isdigit())
        return (alpha + digits) / length >= self.min_alnum_ratio


STRICT_POLICY = ChunkFilterPolicy(
    name="strict",
    min_length=40,
    min_alpha=25,
    min_alnum_ratio=0.2,
)

RELAXED_POLICY = ChunkFilterPolicy(name="relaxed", min_alpha=10)

DEFAULT_POLICIES: tuple[ChunkFilterPolicy, ...] = (STRICT_POLICY, RELAXED_POLICY)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_text(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WHITESPACE.sub(" ", text).strip()


def estimate_tokens(text: str) -> int:
    """Cheap token estimate: one token per four characters, at least one."""
    return max(1, round(len(text) / 4))


class Chunker:
    """Deterministic sliding-window chunker."""

    def __init__(
        self,
        chunk_size: int = 1200,
        chunk_overlap: int = 200,
        policies: Sequence[ChunkFilterPolicy] = DEFAULT_POLICIES,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.policies = tuple(policies)

    def chunk(self, text: str) -> list[TextChunk]:
        """
        Split text into filtered, contiguously indexed chunks.

        Returns an empty list for empty input, or when every policy rejects
        every window. The caller decides whether that is a failure.

        Pipeline position: Step 2 of ingestion (extract → chunk → embed).
        """
        normalized = normalize_text(text)
        if not normalized:
            return []

        windows = list(self._windows(normalized))

        for policy in self.policies:
            kept = [(start, content) for start, content in windows if policy.accepts(content)]
            if kept:
                if policy is not self.policies[0]:
                    logger.info(
                        "Noise filter fell back to '%s' policy (%d of %d windows kept)",
                        policy.name, len(kept), len(windows),
                    )
                chunks = [
                    TextChunk(
                        index=i,
                        content=content,
                        token_estimate=estimate_tokens(content),
                        start=start,
                    )
                    for i, (start, content) in enumerate(kept)
                ]
                logger.info(
                    "Chunked %d characters into %d chunks (size=%d, overlap=%d)",
                    len(normalized), len(chunks), self.chunk_size, self.chunk_overlap,
                )
                return chunks

        logger.warning(
            "All %d windows rejected by every noise-filter policy", len(windows),
        )
        return []

    def _windows(self, normalized: str):
        step = self.chunk_size - self.chunk_overlap
        length = len(normalized)
        start = 0
        while True:
            end = min(start + self.chunk_size, length)
            yield start, normalized[start:end]
            if end >= length:
                return
            start += step


def approximate_page_number(
    start: int,
    text_length: int,
    page_count: int | None,
) -> int | None:
    """
    Map a character offset to a 1-based page number, proportionally.

    Extraction joins pages into one string, so the true page boundary is
    lost; the offset's share of the text length is a good enough proxy for
    a citation hint.
    """
    if not page_count or text_length <= 0:
        return None
    return min(page_count, int(start / text_length * page_count) + 1)
