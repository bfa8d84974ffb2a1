#!/usr/bin/env python3
"""
Run the ingestion pipeline for one filing from the command line.

Useful for re-ingesting a failed filing without going through the API or a
Celery worker. Uses the configured store backend and providers (.env).

Usage:
    python scripts/ingest.py <filing_id>
    python scripts/ingest.py <filing_id> --embed-only

Exit status is non-zero if ingestion fails; the filing is then `failed`
with the error recorded in ingestion_error.
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import sys

from filing_rag.config import get_settings
from filing_rag.errors import FilingRagError
from filing_rag.logging_config import configure_logging
from filing_rag.services.container import build_container

logger = logging.getLogger("scripts.ingest")


async def run(filing_id: str, embed_only: bool) -> dict:
    settings = get_settings()
    container = build_container(settings)
    pipeline = container.pipeline

    try:
        if embed_only:
            result = await pipeline.embed_filing_chunks(filing_id)
        else:
            result = await pipeline.ingest_filing(filing_id)
    finally:
        # Release pooled connections before asyncio.run() closes the loop
        if settings.store_backend == "postgres":
            from filing_rag.db.engine import get_async_engine

            await get_async_engine().dispose()
    return dataclasses.asdict(result)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("filing_id", help="ID of the filing to ingest")
    parser.add_argument(
        "--embed-only",
        action="store_true",
        help="Only embed chunks that have no vector yet",
    )
    args = parser.parse_args()

    configure_logging(get_settings().log_level)

    try:
        summary = asyncio.run(run(args.filing_id, args.embed_only))
    except FilingRagError as exc:
        logger.error("Ingestion failed: %s: %s", type(exc).__name__, exc)
        return 1

    print(json.dumps({"filing_id": args.filing_id, **summary}, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
