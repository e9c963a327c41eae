"""
==============================================================================
OpenCV Media Device Provider
==============================================================================

Camera enumeration and stream acquisition backed by ``cv2.VideoCapture``.

Enumeration:
------------
- Linux: reads /sys/class/video4linux for device nodes and their names
- Elsewhere: tries OpenCV indices up to ``max_scan_devices``

Constraints:
------------
- Exact device id: opens that device only
- Environment facing: first device whose label matches a rear keyword
- Any camera: first device that opens

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import threading
from pathlib import Path
from typing import List, Optional

import cv2
import numpy as np

from gtin_scanner.config import Settings, get_settings

from .interfaces import (
    CameraPermissionError,
    DeviceNotFoundError,
    MediaDeviceProvider,
    StreamHandle,
)
from .models import DeviceInfo, StreamConstraints, VIDEO_INPUT


# Module logger
logger = logging.getLogger(__name__)

SYSFS_VIDEO = Path("/sys/class/video4linux")
_NODE_PATTERN = re.compile(r"video(\d+)$")


class OpenCVStream(StreamHandle):
    """
    A live ``cv2.VideoCapture`` stream.

    Reads run in a worker thread; ``stop()`` takes the same lock so the
    device is never released underneath an in-flight read.
    """

    def __init__(self, capture: cv2.VideoCapture, device_id: str) -> None:
        self._cap = capture
        self._device_id = device_id
        self._lock = threading.Lock()
        self._latest: Optional[np.ndarray] = None
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def device_id(self) -> str:
        return self._device_id

    def _read_blocking(self) -> Optional[np.ndarray]:
        with self._lock:
            if not self._active:
                return None
            ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        self._latest = frame
        return frame

    async def read_frame(self) -> Optional[np.ndarray]:
        return await asyncio.to_thread(self._read_blocking)

    def snapshot(self) -> Optional[np.ndarray]:
        """Copy of the last frame read; never touches the device."""
        latest = self._latest
        return None if latest is None else latest.copy()

    def stop(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
            self._cap.release()
        self._latest = None
        logger.debug(f"Stream released: {self._device_id}")


class OpenCVDeviceProvider(MediaDeviceProvider):
    """
    Media device provider for locally attached cameras.

    Example:
        >>> provider = OpenCVDeviceProvider()
        >>> devices = await provider.enumerate()
        >>> stream = await provider.acquire(StreamConstraints.any_camera())
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    # =========================================================================
    # ENUMERATION
    # =========================================================================

    async def enumerate(self) -> List[DeviceInfo]:
        return await asyncio.to_thread(self._enumerate_blocking)

    def _enumerate_blocking(self) -> List[DeviceInfo]:
        if SYSFS_VIDEO.is_dir():
            return self._enumerate_sysfs()
        return self._enumerate_indices()

    def _enumerate_sysfs(self) -> List[DeviceInfo]:
        devices = []
        nodes = sorted(
            (p for p in SYSFS_VIDEO.iterdir() if _NODE_PATTERN.match(p.name)),
            key=lambda p: int(_NODE_PATTERN.match(p.name).group(1))
        )
        for node in nodes:
            # Secondary nodes (index > 0) carry metadata, not frames
            index_file = node / "index"
            if index_file.exists() and index_file.read_text().strip() != "0":
                continue
            name_file = node / "name"
            label = name_file.read_text().strip() if name_file.exists() else node.name
            devices.append(DeviceInfo(f"/dev/{node.name}", label, VIDEO_INPUT))
        return devices

    def _enumerate_indices(self) -> List[DeviceInfo]:
        devices = []
        for index in range(self._settings.max_scan_devices):
            cap = cv2.VideoCapture(index)
            try:
                if cap.isOpened():
                    devices.append(DeviceInfo(str(index), f"Camera {index}", VIDEO_INPUT))
            finally:
                cap.release()
        return devices

    # =========================================================================
    # ACQUISITION
    # =========================================================================

    async def acquire(self, constraints: StreamConstraints) -> StreamHandle:
        if constraints.device_id is not None:
            return await self._open(constraints.device_id)

        devices = await self.enumerate()

        if constraints.facing_mode is not None:
            keywords = self._settings.environment_facing_keywords
            for device in devices:
                if any(k in device.label.lower() for k in keywords):
                    return await self._open(device.device_id)
            raise DeviceNotFoundError(
                f"No {constraints.facing_mode}-facing camera among {len(devices)} devices"
            )

        candidates = [d.device_id for d in devices] or ["0"]
        denied = None
        for device_id in candidates:
            try:
                return await self._open(device_id)
            except CameraPermissionError as e:
                denied = e
            except DeviceNotFoundError:
                continue
        if denied is not None:
            raise denied
        raise DeviceNotFoundError("No camera could be opened")

    async def _open(self, device_id: str) -> OpenCVStream:
        self._check_permission(device_id)
        capture = await asyncio.to_thread(self._open_blocking, device_id)
        if capture is None:
            raise DeviceNotFoundError(f"Could not open camera {device_id}")
        logger.info(f"📷 Camera opened: {device_id}")
        return OpenCVStream(capture, device_id)

    def _open_blocking(self, device_id: str) -> Optional[cv2.VideoCapture]:
        cap = cv2.VideoCapture(self._source(device_id))
        if not cap.isOpened():
            cap.release()
            return None
        if self._settings.frame_width:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._settings.frame_width)
        if self._settings.frame_height:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._settings.frame_height)
        return cap

    @staticmethod
    def _source(device_id: str):
        match = _NODE_PATTERN.search(device_id)
        if device_id.isdigit():
            return int(device_id)
        if match:
            return int(match.group(1))
        return device_id

    @staticmethod
    def _check_permission(device_id: str) -> None:
        if not device_id.startswith("/dev/"):
            return
        if not os.path.exists(device_id):
            raise DeviceNotFoundError(f"{device_id} does not exist")
        if not os.access(device_id, os.R_OK | os.W_OK):
            raise CameraPermissionError(f"No read/write access to {device_id}")
