"""
Decoding and normalization of issue photos.

The citizen app sends photos as raw base64 or as `data:image/...;base64,` URIs.
Everything is re-encoded to JPEG and bounded in size before it is stored.
"""

from __future__ import annotations

import base64
import binascii
import io
import re
import uuid
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

DATA_URI_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")
JPEG_QUALITY = 85


class InvalidImageError(ValueError):
    """Raised when an uploaded photo cannot be decoded."""


@dataclass
class NormalizedImage:
    data: bytes
    width: int
    height: int

    @property
    def size_kb(self) -> int:
        return round(len(self.data) / 1024)


def strip_data_uri(encoded: str) -> str:
    return DATA_URI_PREFIX.sub("", encoded.strip())


def decode_base64_image(encoded: str, max_bytes: int) -> bytes:
    raw = strip_data_uri(encoded)
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("Image is not valid base64") from exc
    if not data:
        raise InvalidImageError("Image is empty")
    if len(data) > max_bytes:
        raise InvalidImageError(
            f"Image exceeds maximum size of {max_bytes // 1024} KB"
        )
    return data


def normalize_image(data: bytes, max_dimension: int) -> NormalizedImage:
    """Re-encodes the photo as an RGB JPEG no larger than max_dimension per side."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.mode != "RGB":
                img = img.convert("RGB")
            img.thumbnail((max_dimension, max_dimension))
            out = io.BytesIO()
            img.save(out, format="JPEG", quality=JPEG_QUALITY)
            return NormalizedImage(data=out.getvalue(), width=img.width, height=img.height)
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImageError("Image could not be decoded") from exc


def new_image_path() -> str:
    """Storage path for a freshly uploaded photo."""
    return f"issues/photos/{uuid.uuid4().hex}.jpg"
