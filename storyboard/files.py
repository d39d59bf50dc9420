"""Image file helpers: reading from disk, data URLs and compression."""

from __future__ import annotations

import base64
import io
import logging
import mimetypes
import re
from pathlib import Path
from typing import Iterable

from PIL import Image, UnidentifiedImageError

from storyboard.models import UploadedImage

logger = logging.getLogger(__name__)

MAX_DIMENSION = 1024
JPEG_QUALITY = 85

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?;base64,(?P<data>.*)$", re.DOTALL)

_EXTENSIONS = {"image/jpeg": ".jpeg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}


def bytes_to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def data_url_to_bytes(data_url: str) -> tuple[bytes, str]:
    """Decode a base64 data URL into ``(bytes, mime_type)``."""
    match = _DATA_URL.match(data_url)
    if not match:
        raise ValueError("Not a base64 data URL")
    return base64.b64decode(match.group("data")), match.group("mime") or "application/octet-stream"


def extension_for(mime_type: str) -> str:
    return _EXTENSIONS.get(mime_type) or mimetypes.guess_extension(mime_type) or ".bin"


def read_images(paths: Iterable[str | Path]) -> list[UploadedImage]:
    images = []
    for p in paths:
        path = Path(p)
        if not path.exists():
            raise FileNotFoundError(f"Image not found: {path}")
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        images.append(UploadedImage.from_bytes(path.read_bytes(), mime_type, path.name))
        logger.debug("Read %s (%s, %d bytes)", path, mime_type, images[-1].size)
    return images


def compress_image(image: UploadedImage) -> UploadedImage:
    """Downscale to at most 1024 px on the long side and re-encode as JPEG.

    Non-images and GIFs are returned unchanged, as is anything Pillow
    cannot decode.
    """
    if not image.mime_type.startswith("image/") or image.mime_type == "image/gif":
        return image
    try:
        with Image.open(io.BytesIO(image.data)) as img:
            img = img.convert("RGB")
            img.thumbnail((MAX_DIMENSION, MAX_DIMENSION), Image.LANCZOS)
            out = io.BytesIO()
            img.save(out, format="JPEG", quality=JPEG_QUALITY)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("Could not compress %s, keeping original: %s", image.name, e)
        return image

    name = Path(image.name).stem + ".jpeg"
    return UploadedImage.from_bytes(out.getvalue(), "image/jpeg", name)
