# =============================================================================
# Blob Store — Raw Uploaded Documents
# =============================================================================
#
# The core only needs three blob operations: upload, download, remove.
# `Filing.storage_path` holds the key returned by `new_path()`.
#
# DESIGN DECISION: Protocol, like FilingStore and LLMProvider. An S3 or
# Supabase Storage backend only has to provide the same three coroutines.
#
# DESIGN DECISION: LocalBlobStore runs file I/O in asyncio.to_thread().
# Filings can be tens of megabytes; a blocking write on the event loop
# would stall every concurrent request.
#
# `remove()` is best-effort by contract: it logs and never raises, because
# it only runs as cleanup after the authoritative row change.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from pathlib import Path, PurePosixPath
from typing import Protocol

from filing_rag.errors import StorageError

logger = logging.getLogger(__name__)

_UNSAFE_SEGMENT = re.compile(r"[^A-Za-z0-9_.-]")


class BlobStore(Protocol):
    """Protocol for the document blob store."""

    async def upload(self, path: str, data: bytes, content_type: str | None = None) -> None:
        ...

    async def download(self, path: str) -> bytes:
        ...

    async def remove(self, path: str) -> None:
        ...


def new_blob_path(user_id: str, filename: str | None) -> str:
    """Owner-prefixed, collision-free key: <owner>/<uuid><ext>."""
    owner = _UNSAFE_SEGMENT.sub("_", user_id) or "anonymous"
    suffix = PurePosixPath(filename or "").suffix.lower()
    if _UNSAFE_SEGMENT.search(suffix):
        suffix = ""
    return f"{owner}/{uuid.uuid4().hex}{suffix}"


class LocalBlobStore:
    """Blob store on the local filesystem, rooted at one directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if not full.is_relative_to(self.root):
            raise StorageError(f"blob path escapes the store root: {path}")
        return full

    async def upload(self, path: str, data: bytes, content_type: str | None = None) -> None:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(f"blob upload failed for {path}: {exc}") from exc

        logger.info("Stored blob %s (%d bytes, %s)", path, len(data), content_type)

    async def download(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as exc:
            raise StorageError(f"blob not found: {path}") from exc
        except OSError as exc:
            raise StorageError(f"blob download failed for {path}: {exc}") from exc

    async def remove(self, path: str) -> None:
        try:
            target = self._resolve(path)
            await asyncio.to_thread(target.unlink, missing_ok=True)
        except (OSError, StorageError) as exc:
            logger.warning("Best-effort blob removal failed for %s: %s", path, exc)
