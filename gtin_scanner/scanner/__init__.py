"""
==============================================================================
Scanner Package - Barcode Detection
==============================================================================

Barcode decoding with OpenCV and pyzbar.

Classes:
--------
- BarcodeScanner: Decode engine used for live frames and still images

==============================================================================
"""

from .core import BarcodeScanner

__all__ = ["BarcodeScanner"]
