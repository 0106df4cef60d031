from __future__ import annotations
import io
import pytest
from PIL import Image
from stepleague.services.media import compress_image, sniff_mime


def _image(fmt: str, size=(64, 48)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (10, 200, 30)).save(buf, format=fmt)
    return buf.getvalue()


def test_sniff_mime():
    assert sniff_mime(_image("PNG")) == "image/png"
    assert sniff_mime(_image("JPEG")) == "image/jpeg"
    assert sniff_mime(b"not an image") is None


def test_compress_caps_dimension_and_outputs_jpeg():
    data, mime = compress_image(_image("PNG", size=(4000, 1000)), max_bytes=2 * 1024 * 1024, max_dimension=1920)
    assert mime == "image/jpeg"
    with Image.open(io.BytesIO(data)) as img:
        assert img.format == "JPEG"
        assert max(img.size) == 1920


def test_compress_rejects_garbage():
    with pytest.raises(ValueError):
        compress_image(b"\x00" * 100, max_bytes=1000)
