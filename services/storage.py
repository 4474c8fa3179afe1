"""
Object storage for generated artifacts.

Keys are ``applications/{application_id}/{file_name}``. LocalObjectStorage writes
under a base directory (the default for development); S3ObjectStorage uploads with
retry and exponential backoff (1s, 2s, 4s ...).
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Protocol

from services.errors import StorageError

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


def storage_key(application_id: str, file_name: str) -> str:
    return f"applications/{application_id}/{file_name}"


class ObjectStorage(Protocol):
    async def store(self, data: bytes, key: str, content_type: str = PDF_CONTENT_TYPE) -> str: ...

    async def fetch(self, key: str) -> bytes: ...


class LocalObjectStorage:
    def __init__(self, base_dir: Path):
        self._base = Path(base_dir).resolve()

    def _path(self, key: str) -> Path:
        path = (self._base / key).resolve()
        if self._base not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    async def store(self, data: bytes, key: str, content_type: str = PDF_CONTENT_TYPE) -> str:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        logger.info("Stored artifact %s (%d bytes)", key, len(data))
        return path.as_uri()

    async def fetch(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e


@lru_cache(maxsize=1)
def get_s3_client() -> Any:
    """Get a cached S3 client instance."""
    import boto3

    return boto3.client("s3")


class S3ObjectStorage:
    def __init__(
        self,
        bucket: str,
        region: str,
        max_retries: int = 3,
        client: Optional[Any] = None,
        backoff_seconds: float = 1.0,
    ):
        if not bucket:
            raise ValueError("s3_bucket is required for the s3 storage backend")
        self._bucket = bucket
        self._region = region
        self._max_retries = max(1, max_retries)
        self._client = client
        self._backoff = backoff_seconds

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_s3_client()
        return self._client

    def url_for(self, key: str) -> str:
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    async def store(self, data: bytes, key: str, content_type: str = PDF_CONTENT_TYPE) -> str:
        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_retries + 1):
            try:
                await asyncio.to_thread(
                    self.client.put_object,
                    Bucket=self._bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                    Metadata={"uploadedAt": datetime.now(timezone.utc).isoformat()},
                )
                logger.info("Uploaded artifact to s3://%s/%s", self._bucket, key)
                return self.url_for(key)
            except Exception as e:
                last_error = e
                logger.warning("Upload attempt %d/%d for %s failed: %s", attempt, self._max_retries, key, e)
                if attempt < self._max_retries:
                    await asyncio.sleep(self._backoff * (2 ** (attempt - 1)))
        raise StorageError(f"Failed to upload {key} after {self._max_retries} attempts: {last_error}")

    async def fetch(self, key: str) -> bytes:
        def _get() -> bytes:
            resp = self.client.get_object(Bucket=self._bucket, Key=key)
            return resp["Body"].read()

        try:
            return await asyncio.to_thread(_get)
        except Exception as e:
            raise StorageError(f"Failed to download {key}: {e}") from e
