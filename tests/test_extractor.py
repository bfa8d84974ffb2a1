# =============================================================================
# Unit Tests — Text Extractor
# =============================================================================
#
# Covers plain-text decoding, PDF selectable text, the OCR fallback (with
# pytesseract mocked so Tesseract need not be installed), and the binary
# garbage guard.
# =============================================================================

import asyncio
import logging
from unittest.mock import patch

import pytest

from filing_rag.errors import ExtractionError
from filing_rag.services.extractor import (
    TextExtractor,
    decode_plain_text,
    guard_against_binary_garbage,
    is_pdf,
)


def _run(coro):
    return asyncio.run(coro)


class TestPlainText:
    """Tests for the non-PDF path."""

    def test_utf8_text_is_returned(self):
        result = _run(TextExtractor().extract(b"Revenue grew 12% year over year.", "text/plain"))
        assert result.text == "Revenue grew 12% year over year."
        assert result.page_count is None
        assert result.ocr_used is False

    def test_control_characters_are_stripped(self):
        assert decode_plain_text(b"Revenue\x00 grew\x07\tup\n") == "Revenue grew\tup\n"

    def test_bom_is_dropped(self):
        assert decode_plain_text(b"\xef\xbb\xbfNet income") == "Net income"

    def test_invalid_utf8_is_replaced_not_fatal(self):
        text = decode_plain_text(b"Margin \xff improved")
        assert text.startswith("Margin ")
        assert text.endswith(" improved")

    def test_whitespace_only_raises(self):
        with pytest.raises(ExtractionError, match="no selectable or recognizable text"):
            _run(TextExtractor().extract(b"  \n\t ", "text/plain"))


class TestPdfDetection:
    """Tests for is_pdf()."""

    def test_magic_bytes(self):
        assert is_pdf(b"%PDF-1.7\n...", None)

    def test_mime_type_hint(self):
        assert is_pdf(b"anything", "application/pdf")

    def test_filename_hint(self):
        assert is_pdf(b"anything", "Annual-Report.PDF")

    def test_plain_text(self):
        assert not is_pdf(b"hello", "text/plain")


class TestPdfText:
    """Tests for PDF extraction via PyMuPDF."""

    def test_selectable_text_joins_pages(self, make_pdf):
        data = make_pdf(["Revenue grew 12 percent", "Net income rose"])
        result = _run(TextExtractor().extract(data, "application/pdf"))

        assert result.text == "Revenue grew 12 percent\nNet income rose"
        assert result.page_count == 2
        assert result.ocr_used is False

    def test_blank_pdf_without_ocr_raises(self, make_pdf):
        extractor = TextExtractor(ocr_enabled=False)
        with pytest.raises(ExtractionError, match="no selectable or recognizable text"):
            _run(extractor.extract(make_pdf([""]), "application/pdf"))

    def test_unreadable_pdf_raises(self):
        # MuPDF may refuse the buffer or repair it into an empty document
        with pytest.raises(ExtractionError):
            _run(TextExtractor(ocr_enabled=False).extract(
                b"%PDF-1.4 this is not a pdf", "application/pdf",
            ))

    def test_ocr_fallback_used_for_scanned_pages(self, make_pdf):
        extractor = TextExtractor(ocr_enabled=True, ocr_scale=1.0)
        with patch(
            "filing_rag.services.extractor.pytesseract.image_to_string",
            return_value="  Scanned revenue table  ",
        ) as ocr:
            result = _run(extractor.extract(make_pdf(["", ""]), "application/pdf"))

        assert ocr.call_count == 2
        assert result.ocr_used is True
        assert result.text == "Scanned revenue table\nScanned revenue table"
        assert result.skipped_pages == 0

    def test_ocr_page_cap_skips_with_warning(self, make_pdf, caplog):
        extractor = TextExtractor(ocr_enabled=True, ocr_scale=1.0, ocr_max_pages=2)
        with patch(
            "filing_rag.services.extractor.pytesseract.image_to_string",
            return_value="Scanned page",
        ) as ocr, caplog.at_level(logging.WARNING, logger="filing_rag.services.extractor"):
            result = _run(extractor.extract(make_pdf(["", "", ""]), "application/pdf"))

        assert ocr.call_count == 2
        assert result.page_count == 3
        assert result.skipped_pages == 1
        assert "OCR page cap reached" in caplog.text

    def test_missing_tesseract_raises(self, make_pdf):
        import pytesseract

        extractor = TextExtractor(ocr_enabled=True, ocr_scale=1.0)
        with patch(
            "filing_rag.services.extractor.pytesseract.image_to_string",
            side_effect=pytesseract.TesseractNotFoundError(),
        ):
            with pytest.raises(ExtractionError, match="OCR engine unavailable"):
                _run(extractor.extract(make_pdf([""]), "application/pdf"))


class TestBinaryGuard:
    """Tests for the binary-garbage rejection."""

    @pytest.mark.parametrize("garbage", [
        "1 0 obj << /Type /Catalog >> endobj",
        "stream x\x9c endstream",
        "<< /Filter /FlateDecode /Length 42 >>",
        "%PDF-1.5 leftover header",
        "xref 0 12",
    ])
    def test_markers_are_rejected(self, garbage):
        with pytest.raises(ExtractionError, match="binary garbage detected"):
            guard_against_binary_garbage(garbage)

    def test_prose_passes(self):
        guard_against_binary_garbage("The objective of this report is to describe revenue.")

    def test_marker_outside_window_is_ignored(self):
        guard_against_binary_garbage("a" * 50 + " endobj", window=40)

    def test_extract_rejects_garbage_text(self):
        with pytest.raises(ExtractionError, match="binary garbage detected"):
            _run(TextExtractor().extract(b"5 0 obj\n<< /Length 6 >>\nendobj", "text/plain"))
