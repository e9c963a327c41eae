"""
External capabilities consumed by the capture subsystem.

Concrete implementations live in ``opencv_provider`` (camera access),
``gtin_scanner.scanner`` (symbol decoding) and ``transcode`` (image codecs).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from .models import DecodedResult, DeviceInfo, StreamConstraints


class CameraPermissionError(Exception):
    """The host or the user refused access to a camera."""


class DeviceNotFoundError(Exception):
    """No device satisfies the requested constraints, or it failed to open."""


class StreamHandle(ABC):
    """An open camera stream. Owned by exactly one capture session."""

    @property
    @abstractmethod
    def active(self) -> bool:
        ...

    @property
    def device_id(self) -> Optional[str]:
        """Id of the device actually opened, when the provider knows it."""
        return None

    @abstractmethod
    async def read_frame(self) -> Optional[np.ndarray]:
        """Grab the current live frame (BGR), or None if none is available."""
        ...

    @abstractmethod
    def snapshot(self) -> Optional[np.ndarray]:
        """Return the most recent frame without waiting on the device."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """Release the device. Synchronous and idempotent."""
        ...


class MediaDeviceProvider(ABC):
    @abstractmethod
    async def enumerate(self) -> List[DeviceInfo]:
        ...

    @abstractmethod
    async def acquire(self, constraints: StreamConstraints) -> StreamHandle:
        """
        Open a stream matching ``constraints``.

        Raises:
            CameraPermissionError: access was refused
            DeviceNotFoundError: nothing matched or the device failed to open
        """
        ...


class DecodeEngine(ABC):
    @abstractmethod
    async def one_shot_decode(self, frame: np.ndarray) -> Optional[DecodedResult]:
        """Attempt a single decode. "Not found" is None, never an exception."""
        ...


class ImageCodecBridge(ABC):
    @abstractmethod
    async def transcode(self, raw: bytes, source_format: str) -> bytes:
        """Convert ``raw`` in ``source_format`` to JPEG bytes."""
        ...
