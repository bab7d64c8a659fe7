"""Keeps a record's asset reference pointing at a live blob.

There is no transaction spanning the record store and the blob store, so the
two writes are ordered: the blob is uploaded first, the record second, and a
blob that no record ends up referencing is deleted again.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .blobs import BlobStore, BlobStoreError, StoredBlob, Upload

logger = logging.getLogger("eventhub.assets")

T = TypeVar("T")

WriteRecord = Callable[[Optional[StoredBlob]], Awaitable[T]]


class BlobAssetCoordinator:
    def __init__(self, blobs: BlobStore, prefix: str) -> None:
        self._blobs = blobs
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    async def _upload(self, upload: Optional[Upload], owner_id: str) -> Optional[StoredBlob]:
        if upload is None:
            return None
        try:
            return await self._blobs.upload(upload, self._prefix, owner_id)
        except BlobStoreError:
            logger.exception("Upload of %s for %s failed; continuing without an asset", upload.filename, owner_id)
            return None

    async def discard(self, key: Optional[str]) -> None:
        """Delete ``key`` from the blob store, logging any failure."""

        if not key:
            return
        try:
            await self._blobs.delete(key)
        except BlobStoreError:
            logger.exception("Failed to delete blob %s", key)

    async def create(self, upload: Optional[Upload], owner_id: str, write: WriteRecord[T]) -> T:
        """Upload ``upload`` (if any) and run ``write`` with the stored blob.

        ``write`` receives ``None`` when there was nothing to upload or the
        upload failed.  If ``write`` raises, the uploaded blob is deleted and
        the original exception propagates.
        """

        blob = await self._upload(upload, owner_id)
        try:
            return await write(blob)
        except Exception:
            if blob is not None:
                logger.warning("Record write failed; removing orphaned blob %s", blob.key)
                await self.discard(blob.key)
            raise

    async def replace(
        self,
        upload: Optional[Upload],
        owner_id: str,
        old_key: Optional[str],
        write: WriteRecord[T],
    ) -> T:
        """Swap the record's asset for ``upload``.

        The old blob is deleted only after the record write succeeded with a
        new reference; on write failure only the new blob is removed.
        """

        blob = await self._upload(upload, owner_id)
        try:
            result = await write(blob)
        except Exception:
            if blob is not None:
                logger.warning("Record write failed; removing replacement blob %s", blob.key)
                await self.discard(blob.key)
            raise

        if blob is not None and old_key and old_key != blob.key:
            await self.discard(old_key)
        return result


__all__ = ["BlobAssetCoordinator", "WriteRecord"]
