"""
Receipt image helpers.

Pillow is used only to confirm the bytes are an image we accept and to
learn its MIME type for the data URI. No resizing or enhancement.
"""

import base64
import binascii
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from familyspend.config import AppSettings, get_settings
from familyspend.errors import UnsupportedImageError


# Pillow format name -> (MIME type, file extensions)
_FORMATS = {
    "JPEG": ("image/jpeg", {"jpg", "jpeg"}),
    "PNG": ("image/png", {"png"}),
    "WEBP": ("image/webp", {"webp"}),
    "GIF": ("image/gif", {"gif"}),
    "BMP": ("image/bmp", {"bmp"}),
}


def inspect_image(
    image_bytes: bytes,
    settings: Optional[AppSettings] = None,
) -> str:
    """
    Confirm the bytes are a supported image and return its MIME type.

    Raises:
        UnsupportedImageError: Unreadable, or a format not in
            supported_image_formats
    """
    settings = settings or get_settings().app

    try:
        with Image.open(BytesIO(image_bytes)) as img:
            img.verify()
            image_format = img.format
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise UnsupportedImageError(f"File is not a readable image: {e}")

    if image_format not in _FORMATS:
        raise UnsupportedImageError(f"Unsupported image format: {image_format}")

    mime_type, extensions = _FORMATS[image_format]
    if not extensions & set(settings.supported_formats_list):
        raise UnsupportedImageError(
            f"Unsupported image format: {image_format.lower()}. "
            f"Supported: {settings.supported_image_formats}"
        )
    return mime_type


def to_data_uri(image_bytes: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def from_data_uri(data_uri: str) -> tuple[str, bytes]:
    """
    Split a base64 data URI into (mime_type, raw_bytes).

    Raises:
        ValueError: Not a base64 data URI
    """
    header, sep, payload = data_uri.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Expected a base64 data URI")
    mime_type = header[len("data:"):-len(";base64")]
    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}")
