"""Content-addressed storage for reference images.

Reference images (the inputs to image-to-image and outpaint generations)
are keyed by the SHA-256 of their decoded bytes inside the user's prefix,
``inputs/<user_id>/<sha256>.<ext>``.  Uploading the same picture twice
therefore resolves to the same key and the second upload is skipped.
Deduplication is per user: identical bytes from two users land under two
different keys.

If the existence probe fails ambiguously the image is uploaded again.  That
is safe because ``put`` overwrites a key with identical contents.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from promptcanvas.core.keys import (
    DEFAULT_MIME_TYPE,
    extension_for_mime_type,
    input_image_key,
    parse_data_uri,
)
from promptcanvas.core.object_store import ObjectStore

logger = logging.getLogger(__name__)


class InputImageStoreError(RuntimeError):
    """Raised when a reference image could not be written."""


@dataclass(frozen=True)
class StoredInputImage:
    """Where a reference image lives and whether it was already there."""

    key: str
    hash: str
    reused: bool


class InputImageStore:
    """Deduplicating writer for user reference images."""

    def __init__(self, store: ObjectStore):
        self.store = store

    async def store_input_image(
        self,
        image_data: str,
        user_id: str,
        fallback_mime_type: str = DEFAULT_MIME_TYPE,
    ) -> StoredInputImage:
        """Store a reference image unless identical bytes are already stored.

        Args:
            image_data: Base64 payload with an optional ``data:<mime>;base64,`` prefix.
            user_id: Owner namespace.
            fallback_mime_type: MIME type when the payload carries none.

        Returns:
            :class:`StoredInputImage` with the key, content hash, and whether
            an existing object was reused.

        Raises:
            InvalidImageDataError: If the payload is not valid base64.
            InputImageStoreError: If the upload fails.
        """
        parsed = parse_data_uri(image_data, fallback_mime_type)
        content_hash = hashlib.sha256(parsed.data).hexdigest()
        key = input_image_key(user_id, content_hash, extension_for_mime_type(parsed.mime_type))

        if await self.store.exists(key):
            logger.info(f"Reusing stored reference image {key}")
            return StoredInputImage(key=key, hash=content_hash, reused=True)

        if not await self.store.put(key, parsed.data, parsed.mime_type):
            raise InputImageStoreError(f"Failed to upload reference image {key}")

        logger.info(f"Stored reference image {key} ({len(parsed.data)} bytes)")
        return StoredInputImage(key=key, hash=content_hash, reused=False)
