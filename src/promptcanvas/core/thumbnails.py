"""Server-side thumbnail derivation.

The browser normally uploads its own thumbnail next to the generated image.
When it does not, the API derives one here so the history list still has
something small to show.
"""

from __future__ import annotations

import io

from PIL import Image


def make_thumbnail(data: bytes, size: int = 256, quality: int = 80) -> bytes:
    """Return a JPEG thumbnail whose longest side is at most ``size`` pixels.

    Args:
        data: Encoded source image (any format Pillow can read).
        size: Maximum width/height of the thumbnail.
        quality: JPEG quality (1-95).

    Returns:
        JPEG-encoded thumbnail bytes.

    Raises:
        PIL.UnidentifiedImageError: If ``data`` is not a readable image.
    """
    with Image.open(io.BytesIO(data)) as image:
        # JPEG has no alpha channel; flatten palette and RGBA images first.
        thumb = image.convert("RGB")
        thumb.thumbnail((size, size))

        buffer = io.BytesIO()
        thumb.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()
