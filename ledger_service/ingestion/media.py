from __future__ import annotations

import base64
import io
import logging

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_DIMENSION = 1920
JPEG_QUALITY = 80


def to_data_uri(data: bytes, content_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def compress_image(data: bytes, content_type: str) -> tuple[bytes, str]:
    """
    Downscale an image so its long edge is at most MAX_DIMENSION and re-encode as JPEG.

    Non-images (PDFs) and images already within bounds pass through unchanged.
    Any decoding or encoding failure also returns the original bytes.
    """

    if not content_type.startswith("image/"):
        return data, content_type

    try:
        img = Image.open(io.BytesIO(data))
        if max(img.size) <= MAX_DIMENSION:
            return data, content_type

        if img.mode in ("RGBA", "LA", "P"):  # JPEG has no alpha channel
            img = img.convert("RGB")
        img.thumbnail((MAX_DIMENSION, MAX_DIMENSION), Image.Resampling.LANCZOS)

        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning({"event": "image_compression_failed", "error": str(exc)})
        return data, content_type

    compressed = buffer.getvalue()
    logger.info(
        {
            "event": "image_compressed",
            "original_bytes": len(data),
            "compressed_bytes": len(compressed),
        }
    )
    return compressed, "image/jpeg"
