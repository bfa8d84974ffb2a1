# =============================================================================
# Text Extractor — PyMuPDF selectable text, Tesseract OCR fallback
# =============================================================================
#
# Turns a raw document buffer into plain text.
#
#   Plain text → UTF-8 decode, control characters stripped.
#   PDF        → 1. selectable text, page by page (PyMuPDF)
#                2. if that is blank: rasterise each page and OCR it
#                   (PyMuPDF pixmap → Pillow image → pytesseract), capped at
#                   a maximum page count
#
# DESIGN DECISION: PyMuPDF over Docling for this pipeline. Ingestion needs
# a cheap, predictable "is there a text layer?" check and explicit control
# over the OCR step (scale factor, page cap). PyMuPDF exposes both directly;
# the rasterised page is handed to Tesseract only when the text layer is
# empty, so born-digital filings never pay for OCR.
#
# DESIGN DECISION: The OCR page cap skips pages with a warning instead of
# failing. Partial extraction of a long scanned filing is preferred over no
# extraction. Answers over such a filing may omit later pages; the only
# signal is the log line (and `ExtractedText.skipped_pages`).
#
# BINARY GUARD: A failed parse sometimes "succeeds" with raw PDF structure
# operators (`endobj`, `/FlateDecode`, ...). Embedding that would pollute
# retrieval for the whole user, so the first few thousand characters are
# scanned and the document is rejected outright.
# =============================================================================

from __future__ import annotations

import asyncio
import io
import logging
import re
from dataclasses import dataclass
from pathlib import PurePath

import fitz  # PyMuPDF
import pytesseract
from PIL import Image

from filing_rag.errors import ExtractionError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

# PDF structural operators that never occur in extracted prose
BINARY_MARKER_PATTERN = re.compile(
    r"%PDF-\d"
    r"|\bendobj\b"
    r"|\bendstream\b"
    r"|\b\d+\s+\d+\s+obj\b"
    r"|/FlateDecode\b"
    r"|/Type\s*/(?:Page|Pages|Catalog|XObject|Font)\b"
    r"|\bxref\s+\d+\s+\d+"
)

# C0 controls and DEL, except tab, newline and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ExtractedText:
    """Result of extracting one document."""

    text: str
    page_count: int | None = None  # None for non-paginated input
    ocr_used: bool = False
    skipped_pages: int = 0  # pages beyond the OCR cap


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class TextExtractor:
    """
    Extracts plain text from uploaded filings.

    PyMuPDF and Tesseract are CPU-bound and synchronous, so PDF work runs in
    a worker thread via asyncio.to_thread() to keep the event loop free.
    """

    def __init__(
        self,
        ocr_enabled: bool = True,
        ocr_scale: float = 2.0,
        ocr_max_pages: int = 25,
        ocr_language: str = "eng",
        guard_window: int = 4000,
    ) -> None:
        self.ocr_enabled = ocr_enabled
        self.ocr_scale = ocr_scale
        self.ocr_max_pages = max(0, ocr_max_pages)
        self.ocr_language = ocr_language
        self.guard_window = guard_window

    async def extract(
        self,
        data: bytes,
        content_type_hint: str | None = None,
    ) -> ExtractedText:
        """
        Extract text from a document buffer.

        Args:
            data: Raw file bytes.
            content_type_hint: MIME type or original filename; either is
                enough to recognise a PDF.

        Returns:
            ExtractedText with non-empty text.

        Raises:
            ExtractionError: If no text could be extracted, the PDF is
                unreadable, or the text looks like binary garbage.

        Pipeline position: Step 1 of ingestion (extract → chunk → embed).
        """
        if is_pdf(data, content_type_hint):
            result = await asyncio.to_thread(self._extract_pdf, data)
        else:
            result = ExtractedText(text=decode_plain_text(data))

        if not result.text.strip():
            raise ExtractionError("no selectable or recognizable text")

        guard_against_binary_garbage(result.text, self.guard_window)

        logger.info(
            "Extracted %d characters (pages=%s, ocr=%s, skipped_pages=%d)",
            len(result.text), result.page_count, result.ocr_used,
            result.skipped_pages,
        )
        return result

    # -----------------------------------------------------------------------
    # PDF path (runs in a worker thread)
    # -----------------------------------------------------------------------

    def _extract_pdf(self, data: bytes) -> ExtractedText:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ExtractionError(f"unreadable PDF: {exc}") from exc

        with doc:
            page_count = doc.page_count
            text = _selectable_text(doc)
            if text.strip():
                return ExtractedText(text=text, page_count=page_count)

            if not self.ocr_enabled:
                logger.warning(
                    "PDF has no selectable text and OCR is disabled (%d pages)",
                    page_count,
                )
                return ExtractedText(text="", page_count=page_count)

            logger.info("No selectable text in %d-page PDF; falling back to OCR", page_count)
            return self._ocr_text(doc, page_count)

    def _ocr_text(self, doc: fitz.Document, page_count: int) -> ExtractedText:
        limit = min(page_count, self.ocr_max_pages)
        if page_count > limit:
            logger.warning(
                "OCR page cap reached: recognising %d of %d pages, "
                "skipping the remaining %d",
                limit, page_count, page_count - limit,
            )

        matrix = fitz.Matrix(self.ocr_scale, self.ocr_scale)
        pages: list[str] = []

        for page_index in range(limit):
            page = doc.load_page(page_index)
            pixmap = page.get_pixmap(matrix=matrix)
            image = Image.open(io.BytesIO(pixmap.tobytes("png")))
            try:
                recognised = pytesseract.image_to_string(image, lang=self.ocr_language)
            except pytesseract.TesseractNotFoundError as exc:
                raise ExtractionError(f"OCR engine unavailable: {exc}") from exc
            except pytesseract.TesseractError as exc:
                logger.warning("OCR failed on page %d: %s", page_index + 1, exc)
                continue

            recognised = recognised.strip()
            if recognised:
                pages.append(recognised)

        return ExtractedText(
            text="\n".join(pages),
            page_count=page_count,
            ocr_used=True,
            skipped_pages=page_count - limit,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_pdf(data: bytes, content_type_hint: str | None) -> bool:
    """True if the hint (MIME type or filename) or the magic bytes say PDF."""
    hint = (content_type_hint or "").lower()
    if "pdf" in hint or PurePath(hint).suffix == ".pdf":
        return True
    return data[:5] == b"%PDF-"


def decode_plain_text(data: bytes) -> str:
    """Decode UTF-8 (BOM tolerated) and drop non-whitespace control characters."""
    text = data.decode("utf-8-sig", errors="replace")
    return _CONTROL_CHARS.sub("", text)


def guard_against_binary_garbage(text: str, window: int = 4000) -> None:
    """
    Reject text whose opening window contains PDF structural operators.

    Raises:
        ExtractionError: If a binary marker is found.
    """
    match = BINARY_MARKER_PATTERN.search(text[:window])
    if match:
        logger.warning("Binary marker %r found in extracted text", match.group(0))
        raise ExtractionError("binary garbage detected")


def _selectable_text(doc: fitz.Document) -> str:
    """Join each page's words with single spaces, pages with newlines."""
    pages: list[str] = []
    for page_index, page in enumerate(doc):
        try:
            words = page.get_text("words")
        except Exception as exc:
            logger.warning(
                "Selectable-text extraction failed on page %d: %s",
                page_index + 1, exc,
            )
            pages.append("")
            continue
        # words: (x0, y0, x1, y1, word, block_no, line_no, word_no)
        pages.append(" ".join(word[4] for word in words))
    return "\n".join(pages)
