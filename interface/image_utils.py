"""Client-side image preparation before upload."""

import io
import base64
import logging

from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

MAX_SIDE = 1024
MAX_BYTES = 1024 * 1024
_QUALITY_STEPS = (90, 80, 70, 60, 50, 40)


def compress_image(data: bytes, max_side: int = MAX_SIDE, max_bytes: int = MAX_BYTES) -> bytes:
    """
    Downscale so the longest side is at most `max_side`, re-encode as JPEG
    and lower the quality until the result fits in `max_bytes`.

    Returns the original bytes if the image cannot be decoded.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image = ImageOps.exif_transpose(image)
            if image.mode != "RGB":
                image = image.convert("RGB")
            image.thumbnail((max_side, max_side), Image.Resampling.LANCZOS)

            compressed = data
            for quality in _QUALITY_STEPS:
                buffer = io.BytesIO()
                image.save(buffer, format="JPEG", quality=quality, optimize=True)
                compressed = buffer.getvalue()
                if len(compressed) <= max_bytes:
                    break
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.warning(f"Image compression failed, sending original: {e}")
        return data

    logger.info(f"Image compressed from {len(data) / 1024:.0f}KB to {len(compressed) / 1024:.0f}KB")
    return compressed


def detect_mime_type(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"GIF"):
        return "image/gif"
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def to_data_uri(data: bytes, mime_type: str = None) -> str:
    mime_type = mime_type or detect_mime_type(data)
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"
