# =============================================================================
# Unit Tests — Chunker Service
# =============================================================================
#
# Tests the character-window chunking and noise-filter policies without
# external dependencies. No API keys, databases, or network calls needed.
# =============================================================================

import math

import pytest

from filing_rag.services.chunker import (
    RELAXED_POLICY,
    STRICT_POLICY,
    Chunker,
    ChunkFilterPolicy,
    approximate_page_number,
    estimate_tokens,
    normalize_text,
)

PROSE = "Revenue grew steadily across all segments this year. " * 100


class TestChunker:
    """Tests for Chunker.chunk()."""

    def test_empty_text_returns_no_chunks(self):
        assert Chunker().chunk("") == []
        assert Chunker().chunk(" \n\t ") == []

    def test_short_sentence_survives_via_relaxed_policy(self):
        chunks = Chunker().chunk("Revenue grew 12% year over year.")
        assert len(chunks) == 1
        assert chunks[0].index == 0
        assert chunks[0].content == "Revenue grew 12% year over year."

    def test_whitespace_is_normalized(self):
        chunks = Chunker().chunk("Net   income\n\nrose\tsharply during the fourth fiscal quarter.")
        assert chunks[0].content == "Net income rose sharply during the fourth fiscal quarter."

    def test_deterministic(self):
        first = Chunker().chunk(PROSE)
        second = Chunker().chunk(PROSE)
        assert [(c.index, c.content, c.start) for c in first] == [
            (c.index, c.content, c.start) for c in second
        ]

    def test_chunk_count_matches_window_formula(self):
        normalized = normalize_text(PROSE)
        chunks = Chunker(chunk_size=1200, chunk_overlap=200).chunk(PROSE)
        expected = math.ceil((len(normalized) - 200) / 1000)
        assert abs(len(chunks) - expected) <= 1

    def test_windows_cover_the_whole_text(self):
        """Dropping each chunk's overlap prefix reconstructs the normalised text."""
        normalized = normalize_text(PROSE)
        chunks = Chunker(chunk_size=1200, chunk_overlap=200).chunk(PROSE)

        rebuilt = chunks[0].content + "".join(c.content[200:] for c in chunks[1:])
        assert rebuilt == normalized
        assert all(len(c.content) <= 1200 for c in chunks)

    def test_no_overlap(self):
        chunks = Chunker(chunk_size=500, chunk_overlap=0).chunk(PROSE)
        assert "".join(c.content for c in chunks) == normalize_text(PROSE)

    def test_noise_windows_dropped_and_indices_contiguous(self):
        good = "Operating margins improved on pricing discipline. " * 6
        text = good + " endobj" * 30 + " " + good
        chunks = Chunker(chunk_size=100, chunk_overlap=0).chunk(text)

        assert chunks
        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert all("endobj" not in c.content for c in chunks)
        starts = [c.start for c in chunks]
        assert starts == sorted(starts)
        assert len(chunks) < math.ceil(len(normalize_text(text)) / 100)

    def test_numeric_table_falls_back_to_relaxed(self):
        text = "Revenue 1,234,567 8,901,234 5,678,901 Net 2,345,678 3,456,789"
        assert not STRICT_POLICY.accepts(text)
        chunks = Chunker().chunk(text)
        assert len(chunks) == 1

    def test_all_windows_rejected_returns_empty(self):
        assert Chunker().chunk("1234 5678 9012 3456 7890 " * 10) == []

    def test_token_estimate_is_set(self):
        chunks = Chunker(chunk_size=400, chunk_overlap=0).chunk(PROSE)
        assert chunks[0].token_estimate == 100

    @pytest.mark.parametrize("size,overlap", [(100, 100), (100, 150), (100, -1), (0, 0)])
    def test_invalid_window_configuration(self, size, overlap):
        with pytest.raises(ValueError):
            Chunker(chunk_size=size, chunk_overlap=overlap)


class TestFilterPolicies:
    """Tests for ChunkFilterPolicy.accepts()."""

    def test_strict_rejects_short_text(self):
        assert not STRICT_POLICY.accepts("Too short to keep.")

    def test_strict_accepts_prose(self):
        assert STRICT_POLICY.accepts("Cash flow from operations increased to a record level.")

    def test_relaxed_still_rejects_binary_markers(self):
        assert not RELAXED_POLICY.accepts("stream data for the page endstream and more words")

    def test_alnum_ratio(self):
        policy = ChunkFilterPolicy(name="ratio", min_alnum_ratio=0.5)
        assert policy.accepts("abc def")
        assert not policy.accepts("a - - - - - - -")

    def test_empty_is_never_accepted(self):
        assert not ChunkFilterPolicy(name="open").accepts("")


class TestHelpers:
    """Tests for token estimation and page approximation."""

    def test_estimate_tokens(self):
        assert estimate_tokens("") == 1
        assert estimate_tokens("a" * 40) == 10

    def test_page_number_is_proportional(self):
        assert approximate_page_number(0, 1000, 4) == 1
        assert approximate_page_number(500, 1000, 4) == 3
        assert approximate_page_number(999, 1000, 4) == 4

    def test_page_number_unknown_without_page_count(self):
        assert approximate_page_number(10, 1000, None) is None
        assert approximate_page_number(0, 0, 3) is None
