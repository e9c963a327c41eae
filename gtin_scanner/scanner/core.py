"""
==============================================================================
Barcode Scanner Core Module
==============================================================================

Decode engine backed by pyzbar (ZBar) with OpenCV preprocessing.

Features:
---------
- Single-shot decode of live frames and still images
- Grayscale conversion before handing pixels to ZBar
- Optional restriction to a set of symbologies (EAN13, UPCA, ...)

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

import cv2
import numpy as np
from pyzbar.pyzbar import ZBarSymbol, decode

from gtin_scanner.capture.interfaces import DecodeEngine
from gtin_scanner.capture.models import DecodedResult


# Module logger
logger = logging.getLogger(__name__)


class BarcodeScanner(DecodeEngine):
    """
    Barcode decode engine.

    Attributes:
        symbols: ZBar symbologies to look for (None = all)

    Example:
        >>> scanner = BarcodeScanner()
        >>> result = await scanner.one_shot_decode(frame)
        >>> result.text if result else None
        '5012345678900'
    """

    def __init__(self, symbologies: Optional[Iterable[str]] = None) -> None:
        """
        Initialize scanner instance.

        Args:
            symbologies: Symbology names such as "EAN13" (None = all)
        """
        self.symbols: Optional[List[ZBarSymbol]] = (
            [ZBarSymbol[name.upper()] for name in symbologies]
            if symbologies else None
        )
        logger.debug(f"Scanner created (symbols={symbologies or 'all'})")

    @staticmethod
    def _to_gray(frame: np.ndarray) -> np.ndarray:
        if frame.ndim == 2:
            return frame
        if frame.shape[2] == 4:
            return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

    def process_frame(self, frame: np.ndarray) -> List[DecodedResult]:
        """
        Decode every symbol in a single frame.

        Args:
            frame: OpenCV image (numpy array, BGR or grayscale)

        Returns:
            Decoded symbols, possibly empty
        """
        if frame is None or frame.size == 0:
            return []

        barcodes = decode(self._to_gray(frame), symbols=self.symbols)

        results = []
        for barcode in barcodes:
            try:
                text = barcode.data.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning(f"Skipping non UTF-8 {barcode.type} payload")
                continue
            results.append(DecodedResult(
                text=text,
                symbology=barcode.type,
                rect={
                    "x": barcode.rect.left,
                    "y": barcode.rect.top,
                    "width": barcode.rect.width,
                    "height": barcode.rect.height
                }
            ))
        return results

    async def one_shot_decode(self, frame: np.ndarray) -> Optional[DecodedResult]:
        results = await asyncio.to_thread(self.process_frame, frame)
        if not results:
            return None
        first = results[0]
        logger.info(f"✓ Detected: {first.text} ({first.symbology})")
        return first
