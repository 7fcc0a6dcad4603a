"""Storage key layout and image payload helpers.

All blobs live in one bucket under per-user prefixes:

======================  ==========================================
Purpose                 Key
======================  ==========================================
History document        ``history/<user_id>/history.json``
Generated image         ``images/<user_id>/<image_id>.jpg``
Generated thumbnail     ``images/<user_id>/<image_id>_thumb.jpg``
Reference image         ``inputs/<user_id>/<content_hash>.<ext>``
======================  ==========================================
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

DEFAULT_MIME_TYPE = "image/jpeg"
THUMBNAIL_SUFFIX = "_thumb"

_DATA_URI_PREFIX = re.compile(r"^data:([^;]+);base64,", re.IGNORECASE)

_EXTENSION_BY_MIME = {
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
}

_CONTENT_TYPE_BY_EXTENSION = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "png": "image/png",
}


class InvalidImageDataError(ValueError):
    """Raised when an image payload is not decodable base64."""


@dataclass(frozen=True)
class ParsedImage:
    """Raw image bytes decoded from a data URI."""

    data: bytes
    mime_type: str


def history_key(user_id: str) -> str:
    return f"history/{user_id}/history.json"


def image_key(user_id: str, image_id: str) -> str:
    return f"images/{user_id}/{image_id}.jpg"


def thumbnail_key(user_id: str, image_id: str) -> str:
    return f"images/{user_id}/{image_id}{THUMBNAIL_SUFFIX}.jpg"


def input_image_key(user_id: str, content_hash: str, ext: str) -> str:
    return f"inputs/{user_id}/{content_hash}.{ext}"


def thumbnail_key_for(image_key_: str) -> str:
    """Derive a thumbnail key by inserting ``_thumb`` before the extension.

    Only the last path segment is considered, so dots in the user prefix
    never confuse the split.  Keys without an extension get the suffix
    appended.
    """
    prefix, _, name = image_key_.rpartition("/")
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        thumb_name = f"{name}{THUMBNAIL_SUFFIX}"
    else:
        thumb_name = f"{stem}{THUMBNAIL_SUFFIX}.{ext}"
    return f"{prefix}/{thumb_name}" if prefix else thumb_name


def extension_for_mime_type(mime_type: str) -> str:
    """Return the file extension for an image MIME type (``jpg`` if unknown)."""
    return _EXTENSION_BY_MIME.get(mime_type.lower(), "jpg")


def content_type_for_key(key: str) -> str:
    """Infer a response content type from a key's extension (``image/png`` if unknown)."""
    _, dot, ext = key.rpartition(".")
    if not dot:
        return "image/png"
    return _CONTENT_TYPE_BY_EXTENSION.get(ext.lower(), "image/png")


def parse_data_uri(payload: str, fallback_mime_type: str = DEFAULT_MIME_TYPE) -> ParsedImage:
    """Decode an optional ``data:<mime>;base64,`` payload into raw bytes.

    Args:
        payload: Base64 text, with or without a data-URI prefix.
        fallback_mime_type: MIME type used when the payload has no prefix.

    Returns:
        :class:`ParsedImage` with the decoded bytes and resolved MIME type.

    Raises:
        InvalidImageDataError: If the base64 body cannot be decoded.
    """
    match = _DATA_URI_PREFIX.match(payload)
    if match:
        mime_type = match.group(1)
        body = payload[match.end():]
    else:
        mime_type = fallback_mime_type
        body = payload

    try:
        data = base64.b64decode(body)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageDataError(f"Invalid base64 image data: {e}") from e

    return ParsedImage(data=data, mime_type=mime_type)
