"""Binary asset storage backends: local filesystem and Amazon S3."""
from __future__ import annotations

import io
import logging
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Optional, Protocol

import anyio
import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger("eventhub.blobs")


class BlobStoreError(RuntimeError):
    """Raised when a blob cannot be written to or removed from the backend."""


@dataclass(frozen=True)
class Upload:
    """A file received from a client, held in memory."""

    filename: str
    content_type: Optional[str]
    data: bytes

    @property
    def extension(self) -> str:
        suffix = PurePosixPath(self.filename or "").suffix.lower()
        if suffix:
            return suffix
        guessed = mimetypes.guess_extension(self.content_type or "") if self.content_type else None
        return guessed or ""


@dataclass(frozen=True)
class StoredBlob:
    url: str
    key: str


class BlobStore(Protocol):
    async def upload(self, upload: Upload, prefix: str, owner_id: str) -> StoredBlob: ...

    async def delete(self, key: str) -> None: ...


def build_key(prefix: str, owner_id: str, upload: Upload) -> str:
    """Return ``<prefix>/<owner_id>/<uuid><ext>`` for a new blob."""

    return f"{prefix.strip('/')}/{owner_id}/{uuid.uuid4().hex}{upload.extension}"


class LocalBlobStore:
    """Writes blobs below ``root`` and serves them from ``base_url``."""

    def __init__(self, root: Path, base_url: str) -> None:
        self._root = root.expanduser().resolve(strict=False)
        self._base_url = base_url.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        candidate = (self._root / key).resolve(strict=False)
        if self._root not in candidate.parents:
            raise BlobStoreError(f"Blob key escapes the storage directory: {key!r}")
        return candidate

    def _write(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise BlobStoreError(f"Failed to write blob {key}: {exc}") from exc

    def _remove(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise BlobStoreError(f"Failed to delete blob {key}: {exc}") from exc

    async def upload(self, upload: Upload, prefix: str, owner_id: str) -> StoredBlob:
        key = build_key(prefix, owner_id, upload)
        await anyio.to_thread.run_sync(self._write, key, upload.data)
        logger.debug("Stored blob %s (%d bytes)", key, len(upload.data))
        return StoredBlob(url=f"{self._base_url}/{key}", key=key)

    async def delete(self, key: str) -> None:
        await anyio.to_thread.run_sync(self._remove, key)


class S3BlobStore:
    """Stores blobs in an S3 bucket with public virtual-hosted URLs."""

    def __init__(
        self,
        bucket: str,
        region: str,
        *,
        client: Any = None,
        endpoint_url: Optional[str] = None,
        public_base_url: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise ValueError("An S3 bucket name is required")
        self._bucket = bucket
        self._region = region
        self._client = client or boto3.client("s3", region_name=region, endpoint_url=endpoint_url)
        default_base = f"https://{bucket}.s3.{region}.amazonaws.com"
        self._public_base_url = (public_base_url or default_base).rstrip("/")

    def url_for(self, key: str) -> str:
        return f"{self._public_base_url}/{key}"

    def _put(self, key: str, upload: Upload) -> None:
        extra_args = {"ContentType": upload.content_type} if upload.content_type else {}
        try:
            self._client.upload_fileobj(io.BytesIO(upload.data), self._bucket, key, ExtraArgs=extra_args)
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(f"Failed to upload {key} to bucket {self._bucket}: {exc}") from exc

    def _delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(f"Failed to delete {key} from bucket {self._bucket}: {exc}") from exc

    async def upload(self, upload: Upload, prefix: str, owner_id: str) -> StoredBlob:
        key = build_key(prefix, owner_id, upload)
        await anyio.to_thread.run_sync(self._put, key, upload)
        logger.debug("Uploaded blob %s to bucket %s", key, self._bucket)
        return StoredBlob(url=self.url_for(key), key=key)

    async def delete(self, key: str) -> None:
        await anyio.to_thread.run_sync(self._delete, key)


__all__ = [
    "BlobStore",
    "BlobStoreError",
    "LocalBlobStore",
    "S3BlobStore",
    "StoredBlob",
    "Upload",
    "build_key",
]
