#!/usr/bin/env python3
"""
Check that a document extracts cleanly before uploading it.

Runs the same extraction as ingestion (selectable text, OCR fallback,
binary-garbage guard) plus the chunker, and prints a short report with a
text preview. Nothing is stored and no provider is called.

Usage:
    python scripts/verify_pdf_extraction.py data/samples/report.pdf
    python scripts/verify_pdf_extraction.py report.pdf --no-ocr --preview 800
"""

import argparse
import asyncio
import sys
from pathlib import Path

from filing_rag.config import get_settings
from filing_rag.errors import ExtractionError
from filing_rag.logging_config import configure_logging
from filing_rag.services.chunker import Chunker
from filing_rag.services.extractor import TextExtractor


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("path", type=Path, help="PDF or text file to check")
    parser.add_argument("--no-ocr", action="store_true", help="Disable the OCR fallback")
    parser.add_argument("--preview", type=int, default=500, help="Characters of text to print")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)

    extractor = TextExtractor(
        ocr_enabled=settings.pdf_ocr_enabled and not args.no_ocr,
        ocr_scale=settings.pdf_ocr_scale,
        ocr_max_pages=settings.pdf_ocr_max_pages,
        ocr_language=settings.pdf_ocr_language,
        guard_window=settings.binary_guard_window,
    )

    data = args.path.read_bytes()
    try:
        extracted = asyncio.run(extractor.extract(data, args.path.name))
    except ExtractionError as exc:
        print(f"FAILED: {exc}")
        return 1

    chunks = Chunker(settings.chunk_size, settings.chunk_overlap).chunk(extracted.text)

    print(f"File:          {args.path}")
    print(f"Pages:         {extracted.page_count if extracted.page_count is not None else '-'}")
    print(f"OCR used:      {extracted.ocr_used}")
    if extracted.skipped_pages:
        print(f"Skipped pages: {extracted.skipped_pages} (beyond the OCR page cap)")
    print(f"Characters:    {len(extracted.text)}")
    print(f"Chunks:        {len(chunks)}")
    print("-" * 60)
    print(extracted.text[: args.preview])
    return 0


if __name__ == "__main__":
    sys.exit(main())
