"""
ImageAsset codec — decode uploads, measure dimensions, shrink reference images.

Uses PIL to validate uploaded bytes and to downscale furniture/decor references
before they are sent alongside the room photo.
"""

import base64
import binascii
import logging
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .errors import ImageDecodeError
from .models import ImageAsset

logger = logging.getLogger(__name__)

# Max width or height of a furniture reference image
MAX_REFERENCE_SIZE = 512

_FORMAT_MIME = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Could not parse image data: {e}") from e
    return img


def decode_upload(data: bytes, content_type: Optional[str] = None) -> ImageAsset:
    """
    Turn raw uploaded bytes into an ImageAsset.

    The bytes must decode as an image. The content type reported by the
    client is kept when it is an image type, otherwise it is derived from
    the decoded format.

    Raises:
        ImageDecodeError: If the payload is empty or not an image.
    """
    if not data:
        raise ImageDecodeError("Could not parse file data: empty payload.")

    img = _open(data)
    mime = content_type if content_type and content_type.startswith("image/") else None
    if mime is None:
        mime = _FORMAT_MIME.get(img.format or "", "image/png")

    logger.info(f"Decoded upload: {img.width}x{img.height} {mime} ({len(data)} bytes)")
    return ImageAsset(data=data, mime_type=mime)


def split_data_url(image_base64: str) -> tuple[bytes, Optional[str]]:
    """
    Split a `data:<mime>;base64,<payload>` string (or bare base64) into raw
    bytes and the declared content type. The bytes are not checked to be an image.
    """
    if image_base64.startswith("data:"):
        try:
            header, b64data = image_base64.split(",", 1)
            mime = header.split(":")[1].split(";")[0]
        except (ValueError, IndexError) as e:
            raise ImageDecodeError("Could not parse file data.") from e
    else:
        b64data = image_base64
        mime = None

    try:
        raw = base64.b64decode(b64data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageDecodeError("Could not parse file data.") from e

    return raw, mime


def decode_data_url(image_base64: str) -> ImageAsset:
    """Decode a data URL (or bare base64) into a validated ImageAsset."""
    raw, mime = split_data_url(image_base64)
    return decode_upload(raw, mime)


def image_dimensions(image: ImageAsset) -> tuple[int, int]:
    """Return (width, height) of an ImageAsset in pixels."""
    with _open(image.data) as img:
        return img.size


def downscale_reference(image: ImageAsset, max_size: int = MAX_REFERENCE_SIZE) -> ImageAsset:
    """
    Shrink an image so its longest side is at most `max_size`, keeping the
    aspect ratio and the original content type. Smaller images pass through.
    """
    img = _open(image.data)
    width, height = img.size
    if max(width, height) <= max_size:
        return image

    scale = min(max_size / width, max_size / height)
    new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
    resized = img.resize(new_size, Image.Resampling.LANCZOS)

    fmt = {v: k for k, v in _FORMAT_MIME.items()}.get(image.mime_type, "PNG")
    if fmt == "JPEG" and resized.mode not in ("RGB", "L"):
        resized = resized.convert("RGB")

    output = BytesIO()
    resized.save(output, format=fmt)
    logger.info(f"Reference downscaled {width}x{height} → {new_size[0]}x{new_size[1]}")
    return ImageAsset(data=output.getvalue(), mime_type=image.mime_type)
