"""
==============================================================================
Still-Image Decode Pipeline
==============================================================================

One decode attempt against one static image.

Steps:
------
1. Detect the image container from its signature (or filename)
2. Transcode HEIC/HEIF to JPEG through the codec bridge
3. Decode the bytes to pixels with OpenCV
4. Run exactly one decode attempt

Every failure is raised as a retryable AppException to the caller of
``decode()``; nothing here touches a camera session.

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Union

import cv2
import numpy as np

from gtin_scanner.core import exceptions

from .interfaces import DecodeEngine, ImageCodecBridge
from .models import DecodedResult, FrozenFrame
from .transcode import detect_container, needs_transcode


# Module logger
logger = logging.getLogger(__name__)


StillImage = Union[bytes, FrozenFrame]


class StillImageDecodePipeline:
    """
    Decodes uploaded files and frozen frames.

    Example:
        >>> pipeline = StillImageDecodePipeline(BarcodeScanner(), PillowHeifBridge())
        >>> result = await pipeline.decode(upload_bytes, "photo.heic")
        >>> result.text
        '5012345678900'
    """

    def __init__(self, engine: DecodeEngine, codec_bridge: ImageCodecBridge) -> None:
        self._engine = engine
        self._bridge = codec_bridge

    async def decode(
        self,
        image: StillImage,
        filename: Optional[str] = None
    ) -> DecodedResult:
        """
        Decode a single image.

        Args:
            image: Raw upload bytes or a frame frozen on pause
            filename: Upload file name, used when the signature is unknown

        Returns:
            The decoded symbol

        Raises:
            AppException: TRANSCODE_FAILED, UNREADABLE_IMAGE or DECODE_NOT_FOUND
        """
        captured = isinstance(image, FrozenFrame)
        data = image.image_bytes if captured else image

        container = detect_container(data, filename)
        if needs_transcode(container):
            data = await self._transcode(data, container)

        pixels = await asyncio.to_thread(self._decode_pixels, data)
        if pixels is None:
            logger.warning(f"Could not read {container} image ({len(data)} bytes)")
            raise exceptions.unreadable_image(filename)

        result = await self._engine.one_shot_decode(pixels)
        if result is None:
            logger.info(f"No barcode in {'captured frame' if captured else filename or 'upload'}")
            raise exceptions.decode_not_found(captured=captured)

        return result

    async def _transcode(self, data: bytes, container: str) -> bytes:
        logger.info(f"Transcoding {container} image ({len(data)} bytes)")
        try:
            return await self._bridge.transcode(data, container)
        except Exception as e:
            logger.warning(f"Transcode of {container} failed: {e}")
            raise exceptions.transcode_failed(container, str(e)) from e

    @staticmethod
    def _decode_pixels(data: bytes) -> Optional[np.ndarray]:
        if not data:
            return None
        buffer = np.frombuffer(data, np.uint8)
        return cv2.imdecode(buffer, cv2.IMREAD_COLOR)
