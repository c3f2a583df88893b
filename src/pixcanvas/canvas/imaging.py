from __future__ import annotations

import io

from PIL import Image


def encode_bmp(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="BMP")
    return buf.getvalue()


def decode_image(raw: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(raw))
    img.load()
    return img
