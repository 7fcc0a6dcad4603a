"""Object store adapter over an S3-compatible bucket (Cloudflare R2).

The adapter wraps a synchronous boto3 S3 client and exposes coroutine
methods; every call runs on a worker thread via :func:`asyncio.to_thread`
so route handlers can await storage without blocking the event loop.

Failure policy
--------------
Backend exceptions never escape this module:

- ``fetch()`` returns a :class:`StoreResult` that distinguishes a missing
  object from a degraded backend.
- ``get()`` collapses that to ``bytes | None`` for callers that only care
  whether they got the bytes.
- ``put()`` and ``delete()`` report success as a boolean.
- ``exists()`` treats any ambiguous failure as "does not exist", so the
  caller falls through to an (idempotent) upload instead of blocking.

There is no caching and no retry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from botocore.exceptions import ClientError

from promptcanvas.core.config import PromptCanvasConfig

logger = logging.getLogger(__name__)

_MISSING_ERROR_CODES = frozenset({"NoSuchKey", "NotFound", "404"})


class StorageNotConfiguredError(RuntimeError):
    """Raised when storage is used without the required settings."""


class StoreStatus(str, Enum):
    OK = "ok"
    MISSING = "missing"
    ERROR = "error"


@dataclass(frozen=True)
class StoreResult:
    """Outcome of a read: the bytes, a soft miss, or a backend error."""

    status: StoreStatus
    data: bytes | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is StoreStatus.OK


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def create_s3_client(cfg: PromptCanvasConfig):
    """Build a boto3 S3 client for the configured R2 bucket.

    Args:
        cfg: Configuration with all storage settings present.

    Returns:
        A boto3 ``s3`` client.

    Raises:
        StorageNotConfiguredError: If any required storage setting is empty.
    """
    if not cfg.storage_configured:
        raise StorageNotConfiguredError("Storage is not configured")

    import boto3

    return boto3.client(
        "s3",
        region_name="auto",
        endpoint_url=cfg.storage_endpoint,
        aws_access_key_id=cfg.r2_access_key_id,
        aws_secret_access_key=cfg.r2_secret_access_key,
    )


class ObjectStore:
    """Key-addressed blob access for a single bucket.

    Args:
        client: boto3 S3 client (or any object with the same four methods).
        bucket: Bucket name every key is resolved against.
    """

    def __init__(self, client, bucket: str):
        self._client = client
        self.bucket = bucket

    async def put(self, key: str, data: bytes, content_type: str) -> bool:
        """Write ``data`` under ``key``, replacing any previous contents."""
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as e:
            logger.error(f"Failed to put {key}: {e}", exc_info=True)
            return False
        return True

    async def fetch(self, key: str) -> StoreResult:
        """Read ``key`` and report whether it was found, missing, or unreadable."""
        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self.bucket, Key=key
            )
            body = response.get("Body")
            if body is None:
                return StoreResult(StoreStatus.MISSING)
            try:
                data = await asyncio.to_thread(body.read)
            finally:
                body.close()
        except ClientError as e:
            if _error_code(e) in _MISSING_ERROR_CODES:
                return StoreResult(StoreStatus.MISSING)
            logger.error(f"Failed to get {key}: {e}")
            return StoreResult(StoreStatus.ERROR, error=str(e))
        except Exception as e:
            logger.error(f"Failed to get {key}: {e}")
            return StoreResult(StoreStatus.ERROR, error=str(e))
        return StoreResult(StoreStatus.OK, data=data)

    async def get(self, key: str) -> bytes | None:
        """Return the bytes stored under ``key``, or None if unavailable."""
        result = await self.fetch(key)
        return result.data if result.ok else None

    async def delete(self, key: str) -> bool:
        """Delete ``key``.  Deleting a missing key counts as success."""
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _MISSING_ERROR_CODES:
                return True
            logger.error(f"Failed to delete {key}: {e}")
            return False
        except Exception as e:
            logger.error(f"Failed to delete {key}: {e}")
            return False
        return True

    async def exists(self, key: str) -> bool:
        """Probe whether ``key`` exists.

        Any failure other than a clean not-found is logged and reported as
        False, so deduplication degrades to a re-upload.
        """
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) not in _MISSING_ERROR_CODES:
                logger.warning(f"Existence check for {key} failed, assuming absent: {e}")
            return False
        except Exception as e:
            logger.warning(f"Existence check for {key} failed, assuming absent: {e}")
            return False
        return True
