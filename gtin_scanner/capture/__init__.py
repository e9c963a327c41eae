"""
==============================================================================
Capture Package - Camera Sessions & Still Images
==============================================================================

Camera lifecycle, live decode polling and still-image decoding.

Classes:
--------
- CaptureSessionManager: Scan state machine owning the camera stream
- FramePollLoop: Cooperative live decode loop
- StillImageDecodePipeline: One-shot decode of uploads and frozen frames
- DeviceEnumerator: Camera listing
- OpenCVDeviceProvider: Local cameras through OpenCV
- PillowHeifBridge: HEIC/HEIF to JPEG conversion

==============================================================================
"""

from .enumerator import DeviceEnumerator
from .interfaces import (
    CameraPermissionError,
    DecodeEngine,
    DeviceNotFoundError,
    ImageCodecBridge,
    MediaDeviceProvider,
    StreamHandle,
)
from .models import (
    CaptureDevice,
    DecodedResult,
    DeviceInfo,
    FrozenFrame,
    SessionState,
    StreamConstraints,
)
from .opencv_provider import OpenCVDeviceProvider
from .poll_loop import FramePollLoop
from .session import CaptureSession, CaptureSessionManager
from .still_image import StillImageDecodePipeline
from .transcode import PillowHeifBridge, detect_container

__all__ = [
    "CameraPermissionError",
    "CaptureDevice",
    "CaptureSession",
    "CaptureSessionManager",
    "DecodeEngine",
    "DecodedResult",
    "DeviceEnumerator",
    "DeviceInfo",
    "DeviceNotFoundError",
    "FramePollLoop",
    "FrozenFrame",
    "ImageCodecBridge",
    "MediaDeviceProvider",
    "OpenCVDeviceProvider",
    "PillowHeifBridge",
    "SessionState",
    "StillImageDecodePipeline",
    "StreamConstraints",
    "StreamHandle",
    "detect_container",
]
