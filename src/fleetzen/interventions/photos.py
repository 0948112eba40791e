"""Photo compression before a blob is stored on the device.

Field photos come straight off phone cameras (often 4000px+, several MB).
They are downscaled so the longest side fits ``max_dimension`` and
re-encoded as JPEG before being attached to a draft.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from fleetzen.errors.draft_errors import InvalidArgumentError, LimitExceededError

logger = logging.getLogger(__name__)

DEFAULT_MAX_DIMENSION = 1920
DEFAULT_QUALITY = 85
DEFAULT_MAX_INPUT_BYTES = 10 * 1024 * 1024
JPEG_MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class CompressedPhoto:
    """Result of :func:`compress_photo`."""

    data: bytes
    mime_type: str
    width: int
    height: int

    @property
    def size(self) -> int:
        """Compressed byte size."""
        return len(self.data)


def jpeg_file_name(file_name: str) -> str:
    """Swap the extension of *file_name* for ``.jpg``."""
    base = (file_name or "photo").rsplit(".", 1)[0] or "photo"
    return f"{base}.jpg"


def compress_photo(
    data: bytes,
    *,
    max_dimension: int = DEFAULT_MAX_DIMENSION,
    quality: int = DEFAULT_QUALITY,
    max_input_bytes: int = DEFAULT_MAX_INPUT_BYTES,
) -> CompressedPhoto:
    """Resize and re-encode *data* as JPEG.

    Args:
        data: Raw image bytes in any format Pillow can decode.
        max_dimension: Longest allowed side in pixels.
        quality: JPEG quality (1-95).
        max_input_bytes: Reject inputs larger than this.

    Returns:
        The compressed photo.

    Raises:
        InvalidArgumentError: If *data* is empty or not a decodable image.
        LimitExceededError: If *data* is larger than *max_input_bytes*, or its
            pixel count is over Pillow's decompression-bomb limit.
    """
    if not data:
        msg = "photo is empty"
        raise InvalidArgumentError(msg)
    if len(data) > max_input_bytes:
        msg = f"photo is {len(data)} bytes, limit is {max_input_bytes}"
        raise LimitExceededError(msg)

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except Image.DecompressionBombError as exc:
        msg = f"photo has too many pixels: {exc}"
        raise LimitExceededError(msg) from exc
    except (UnidentifiedImageError, OSError) as exc:
        msg = f"photo could not be decoded: {exc}"
        raise InvalidArgumentError(msg) from exc

    img = ImageOps.exif_transpose(img) or img
    # JPEG has no alpha channel
    if img.mode != "RGB":
        img = img.convert("RGB")

    w, h = img.size
    if w > max_dimension or h > max_dimension:
        if w >= h:
            new_w = max_dimension
            new_h = max(1, int(h * max_dimension / w))
        else:
            new_h = max_dimension
            new_w = max(1, int(w * max_dimension / h))
        img = img.resize((new_w, new_h), Image.Resampling.LANCZOS)

    out = io.BytesIO()
    img.save(out, format="JPEG", quality=quality, optimize=True)
    compressed = CompressedPhoto(
        data=out.getvalue(),
        mime_type=JPEG_MIME_TYPE,
        width=img.size[0],
        height=img.size[1],
    )
    logger.debug(
        "Compressed photo %d -> %d bytes (%dx%d)",
        len(data),
        compressed.size,
        compressed.width,
        compressed.height,
    )
    return compressed
