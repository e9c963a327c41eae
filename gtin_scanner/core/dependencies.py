"""
==============================================================================
FastAPI Dependencies Module
==============================================================================

Dependency providers for the capture components.

Each provider returns a process-wide instance. Tests swap them out with
``app.dependency_overrides``.

Dependency Hierarchy:
--------------------
    get_decode_engine ──┐
                        ├──▶ get_still_image_pipeline
    get_codec_bridge ───┘
    get_device_provider

Usage Examples:
--------------
    @router.get("/devices")
    async def devices(provider: MediaDeviceProvider = Depends(get_device_provider)):
        ...

==============================================================================
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from gtin_scanner.capture import (
    DecodeEngine,
    ImageCodecBridge,
    MediaDeviceProvider,
    OpenCVDeviceProvider,
    PillowHeifBridge,
    StillImageDecodePipeline,
)
from gtin_scanner.config import get_settings
from gtin_scanner.scanner import BarcodeScanner


@lru_cache(maxsize=1)
def get_device_provider() -> MediaDeviceProvider:
    """Local camera provider."""
    return OpenCVDeviceProvider(get_settings())


@lru_cache(maxsize=1)
def get_decode_engine() -> DecodeEngine:
    """pyzbar decode engine."""
    return BarcodeScanner()


@lru_cache(maxsize=1)
def get_codec_bridge() -> ImageCodecBridge:
    """HEIC/HEIF transcoder."""
    return PillowHeifBridge(get_settings())


def get_still_image_pipeline(
    engine: DecodeEngine = Depends(get_decode_engine),
    bridge: ImageCodecBridge = Depends(get_codec_bridge)
) -> StillImageDecodePipeline:
    """Still-image pipeline built from the current engine and bridge."""
    return StillImageDecodePipeline(engine, bridge)
