"""Camera enumeration on top of a media device provider."""

from __future__ import annotations

import logging
from typing import List

from .interfaces import MediaDeviceProvider
from .models import CaptureDevice, VIDEO_INPUT


# Module logger
logger = logging.getLogger(__name__)


class DeviceEnumerator:
    """
    Lists camera-class capture devices in provider order.

    Never raises: a failing provider is logged and reported as an empty
    list, which makes the session fall back to an unconstrained request.
    """

    def __init__(self, provider: MediaDeviceProvider) -> None:
        self._provider = provider

    async def list_devices(self) -> List[CaptureDevice]:
        try:
            devices = await self._provider.enumerate()
        except Exception as e:
            logger.error(f"Error getting cameras: {e}")
            return []

        cameras = [
            CaptureDevice(device_id=d.device_id, label=d.label)
            for d in devices
            if d.kind == VIDEO_INPUT
        ]
        logger.debug(f"Enumerated {len(cameras)} camera(s)")
        return cameras
