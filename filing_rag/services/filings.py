# =============================================================================
# Filing Management — Upload, List, Delete
# =============================================================================
#
# The thin CRUD layer around FilingStore + BlobStore that the API calls.
# Every operation is owner-scoped: a filing id that exists but belongs to
# someone else raises AuthorizationError, an unknown id FilingNotFoundError.
#
# UPLOAD: validate → blob upload → filing row (status `uploaded`).
# If the row insert fails, the blob just written is removed best-effort so
# no orphaned document stays behind.
#
# DELETE: blob removal is best-effort and happens first; the row delete
# (cascading to chunks) is the authoritative step.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from pathlib import PurePath

from filing_rag.errors import AuthorizationError, FilingNotFoundError, InvalidUploadError
from filing_rag.services.blobstore import BlobStore, new_blob_path
from filing_rag.services.store import FilingRecord, FilingStore

logger = logging.getLogger(__name__)

# Browsers and curl often send a generic type; fall back to the extension
_EXTENSION_TYPES = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
}


def resolve_content_type(content_type: str | None, filename: str | None) -> str | None:
    """Strip MIME parameters; map generic types to one derived from the extension."""
    resolved = (content_type or "").split(";")[0].strip().lower()
    if resolved in ("", "application/octet-stream"):
        suffix = PurePath(filename or "").suffix.lower()
        return _EXTENSION_TYPES.get(suffix) or resolved or None
    return resolved


class FilingService:
    def __init__(
        self,
        store: FilingStore,
        blobs: BlobStore,
        accepted_content_types: Sequence[str] = ("application/pdf", "text/plain"),
    ) -> None:
        self.store = store
        self.blobs = blobs
        self.accepted_content_types = frozenset(accepted_content_types)

    async def upload(
        self,
        user_id: str,
        data: bytes,
        filename: str | None,
        content_type: str | None,
        title: str | None = None,
        ticker: str | None = None,
        filing_type: str | None = None,
        filing_date: date | None = None,
    ) -> FilingRecord:
        """
        Store a new document and create its filing row.

        Raises:
            InvalidUploadError: Empty file or unsupported content type.
            StorageError: Blob or row write failed.
        """
        if not data:
            raise InvalidUploadError("uploaded file is empty")

        resolved_type = resolve_content_type(content_type, filename)
        if resolved_type not in self.accepted_content_types:
            raise InvalidUploadError(
                f"unsupported content type '{resolved_type}'; "
                f"accepted: {sorted(self.accepted_content_types)}"
            )

        storage_path = new_blob_path(user_id, filename)
        await self.blobs.upload(storage_path, data, resolved_type)

        try:
            filing = await self.store.create_filing(
                user_id=user_id,
                title=(title or "").strip() or PurePath(filename or "").stem or "Untitled filing",
                original_filename=filename,
                content_type=resolved_type,
                storage_path=storage_path,
                file_size=len(data),
                ticker=ticker.strip().upper() if ticker and ticker.strip() else None,
                filing_type=filing_type.strip().upper() if filing_type and filing_type.strip() else None,
                filing_date=filing_date,
            )
        except Exception:
            await self.blobs.remove(storage_path)
            raise

        logger.info(
            "Uploaded filing %s for user %s (%s, %d bytes)",
            filing.id, user_id, resolved_type, len(data),
        )
        return filing

    async def list_filings(self, user_id: str) -> list[FilingRecord]:
        return await self.store.list_filings(user_id)

    async def get_owned_filing(self, user_id: str, filing_id: str) -> FilingRecord:
        """
        Raises:
            FilingNotFoundError: Unknown id.
            AuthorizationError: The filing belongs to another user.
        """
        filing = await self.store.get_filing(filing_id)
        if filing is None:
            raise FilingNotFoundError(f"Filing {filing_id} not found")
        if filing.user_id != user_id:
            raise AuthorizationError(f"Filing {filing_id} is not owned by this user")
        return filing

    async def delete_filing(self, user_id: str, filing_id: str) -> None:
        filing = await self.get_owned_filing(user_id, filing_id)
        if filing.storage_path:
            await self.blobs.remove(filing.storage_path)
        await self.store.delete_filing(filing_id)
        logger.info("Deleted filing %s for user %s", filing_id, user_id)
