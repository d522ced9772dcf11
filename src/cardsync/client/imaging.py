"""Image metadata and thumbnails.

This module provides:
- ImageNotSupportedError: Data that Pillow cannot decode
- read_exif_date: Capture date from Exif metadata
- read_thumbnail: Small preview of a JPEG, decoded at reduced scale
- create_thumbnail: Small preview of any decodable image
"""

from __future__ import annotations

import io
import logging
from datetime import datetime
from pathlib import Path

from PIL import ExifTags, Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

THUMBNAIL_SIZE = (160, 120)
THUMBNAIL_QUALITY = 85
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"

# Failures raised by Pillow for data it cannot decode
_DECODE_ERRORS = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    ValueError,
    SyntaxError,
)


class ImageNotSupportedError(Exception):
    """Image data cannot be decoded."""


def _load(source: bytes | Path) -> bytes:
    # Reading a path may raise FileNotFoundError or other OSError
    if isinstance(source, Path):
        return source.read_bytes()
    return source


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
    except _DECODE_ERRORS as e:
        raise ImageNotSupportedError(str(e)) from e
    return image


def read_exif_date(source: bytes | Path) -> datetime | None:
    """Read the date an image was taken.

    Args:
        source: Image data or path to an image file.

    Returns:
        DateTimeOriginal (or DateTime) from Exif, or None if absent.

    Raises:
        ImageNotSupportedError: If the data is not a decodable image.
    """
    image = _open(_load(source))
    with image:
        try:
            exif = image.getexif()
        except _DECODE_ERRORS as e:
            raise ImageNotSupportedError(str(e)) from e
        value = exif.get_ifd(ExifTags.IFD.Exif).get(ExifTags.Base.DateTimeOriginal)
        if not value:
            value = exif.get(ExifTags.Base.DateTime)
    if not value:
        return None
    try:
        return datetime.strptime(str(value).strip("\x00 "), EXIF_DATE_FORMAT)
    except ValueError:
        logger.debug(f"Invalid Exif date: {value!r}")
        return None


def _encode_thumbnail(image: Image.Image) -> bytes:
    try:
        image.thumbnail(THUMBNAIL_SIZE)
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=THUMBNAIL_QUALITY)
    except _DECODE_ERRORS as e:
        raise ImageNotSupportedError(str(e)) from e
    return buffer.getvalue()


def read_thumbnail(source: bytes | Path) -> bytes:
    """Make a thumbnail of a JPEG, decoding it at reduced scale.

    Args:
        source: JPEG data or path to a JPEG file.

    Returns:
        JPEG-encoded thumbnail.

    Raises:
        ImageNotSupportedError: If the data is not a decodable image.
    """
    image = _open(_load(source))
    with image:
        if image.format == "JPEG":
            image.draft("RGB", THUMBNAIL_SIZE)
        return _encode_thumbnail(image)


def create_thumbnail(source: bytes | Path) -> bytes:
    """Make a thumbnail of any image Pillow can decode.

    Raises:
        ImageNotSupportedError: If the data is not a decodable image.
    """
    image = _open(_load(source))
    with image:
        return _encode_thumbnail(image)
