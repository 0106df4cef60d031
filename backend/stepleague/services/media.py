from __future__ import annotations
import io
from PIL import Image, ImageOps, UnidentifiedImageError


ALLOWED_MIME = {"image/jpeg", "image/png", "image/webp"}
MIME_FOR_FORMAT = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}
JPEG_QUALITY_STEPS = (85, 75, 65, 55, 45)

def sniff_mime(data: bytes) -> str | None:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return MIME_FOR_FORMAT.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        return None

def compress_image(data: bytes, max_bytes: int, max_dimension: int = 1920) -> tuple[bytes, str]:
    """
    Shrink a step screenshot for upload.

    The longest edge is capped at `max_dimension` and the image is re-encoded as
    JPEG at decreasing quality until it fits in `max_bytes`. If even the lowest
    quality is too large, the smallest encoding is returned.
    Returns (data, mime). Raises ValueError for anything Pillow cannot decode.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            img.thumbnail((max_dimension, max_dimension))
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            out = b""
            for quality in JPEG_QUALITY_STEPS:
                buf = io.BytesIO()
                img.save(buf, format="JPEG", quality=quality, optimize=True)
                out = buf.getvalue()
                if len(out) <= max_bytes:
                    break
            return out, "image/jpeg"
    except (UnidentifiedImageError, OSError):
        raise ValueError("Invalid image file")
