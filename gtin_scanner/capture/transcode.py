"""
==============================================================================
Image Container Detection & Transcoding
==============================================================================

The decode pipeline reads images through OpenCV, which cannot parse
HEIC/HEIF (the default photo container on recent phones). Those uploads
are converted to JPEG with Pillow and pillow-heif first.

==============================================================================
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Optional

from PIL import Image
from pillow_heif import register_heif_opener

from gtin_scanner.config import Settings, get_settings

from .interfaces import ImageCodecBridge


# Module logger
logger = logging.getLogger(__name__)

register_heif_opener()


# Container names
JPEG = "jpeg"
PNG = "png"
BMP = "bmp"
TIFF = "tiff"
WEBP = "webp"
GIF = "gif"
HEIC = "heic"
HEIF = "heif"
UNKNOWN = "unknown"

# Containers OpenCV decodes directly
DIRECT_FORMATS = frozenset({JPEG, PNG, BMP, TIFF, WEBP})

# Containers that must go through the codec bridge
TRANSCODE_FORMATS = frozenset({HEIC, HEIF})

_HEIC_BRANDS = {b"heic", b"heix", b"hevc", b"hevx", b"heim", b"heis"}
_HEIF_BRANDS = {b"mif1", b"msf1"}

_EXTENSIONS = {
    ".jpg": JPEG, ".jpeg": JPEG, ".png": PNG, ".bmp": BMP,
    ".tif": TIFF, ".tiff": TIFF, ".webp": WEBP, ".gif": GIF,
    ".heic": HEIC, ".heif": HEIF,
}


def detect_container(data: bytes, filename: Optional[str] = None) -> str:
    """
    Identify an image container from its leading bytes.

    Falls back to the filename extension when the signature is unknown.

    Args:
        data: Raw image bytes
        filename: Original file name, if any

    Returns:
        One of the container name constants
    """
    head = data[:16]

    if head.startswith(b"\xff\xd8\xff"):
        return JPEG
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return PNG
    if head.startswith(b"BM"):
        return BMP
    if head[:4] in (b"II*\x00", b"MM\x00*"):
        return TIFF
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return WEBP
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return GIF
    if head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand in _HEIC_BRANDS:
            return HEIC
        if brand in _HEIF_BRANDS:
            return HEIF

    if filename:
        suffix = "." + filename.lower().rsplit(".", 1)[-1] if "." in filename else ""
        return _EXTENSIONS.get(suffix, UNKNOWN)

    return UNKNOWN


def needs_transcode(container: str) -> bool:
    return container in TRANSCODE_FORMATS


class PillowHeifBridge(ImageCodecBridge):
    """
    Converts HEIC/HEIF images to JPEG.

    Example:
        >>> bridge = PillowHeifBridge()
        >>> jpeg = await bridge.transcode(heic_bytes, "heic")
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._quality = (settings or get_settings()).transcode_quality

    async def transcode(self, raw: bytes, source_format: str) -> bytes:
        return await asyncio.to_thread(self._transcode_blocking, raw, source_format)

    def _transcode_blocking(self, raw: bytes, source_format: str) -> bytes:
        with Image.open(io.BytesIO(raw)) as image:
            rgb = image.convert("RGB")
        out = io.BytesIO()
        rgb.save(out, format="JPEG", quality=self._quality)
        logger.debug(
            f"Transcoded {source_format} {rgb.width}x{rgb.height} "
            f"({len(raw)} -> {out.tell()} bytes)"
        )
        return out.getvalue()
