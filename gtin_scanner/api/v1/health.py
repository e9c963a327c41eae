"""
==============================================================================
Health Check Endpoints
==============================================================================

System health status endpoints for monitoring and orchestration.

==============================================================================
"""

import logging

import numpy as np
from fastapi import APIRouter, Depends

from gtin_scanner.capture import DecodeEngine, DeviceEnumerator, MediaDeviceProvider
from gtin_scanner.core.dependencies import get_decode_engine, get_device_provider


# Module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

# Blank frame decoded on every health check
_CANARY = np.full((16, 16), 255, dtype=np.uint8)


class HealthController:
    """Controller for health check operations."""

    def __init__(self, provider: MediaDeviceProvider, engine: DecodeEngine):
        self._enumerator = DeviceEnumerator(provider)
        self._engine = engine

    async def check_decoder(self) -> str:
        """Run one decode on a blank frame so the ZBar library is exercised."""
        try:
            await self._engine.one_shot_decode(_CANARY)
            return "healthy"
        except Exception as e:
            logger.error(f"Decoder health check failed: {e}")
            return "unhealthy"

    async def check_cameras(self) -> dict:
        """Count attached cameras."""
        devices = await self._enumerator.list_devices()
        return {"status": "healthy" if devices else "none", "count": len(devices)}

    async def get_health(self) -> dict:
        """Get full health status."""
        decoder_status = await self.check_decoder()
        camera_info = await self.check_cameras()

        overall = "healthy" if decoder_status == "healthy" else "degraded"

        return {
            "status": overall,
            "components": {
                "api": "healthy",
                "decoder": decoder_status,
                "cameras": camera_info["status"]
            },
            "details": {
                "cameras_found": camera_info["count"]
            }
        }


@router.get("")
async def health_check(
    provider: MediaDeviceProvider = Depends(get_device_provider),
    engine: DecodeEngine = Depends(get_decode_engine)
):
    """
    Health check endpoint.

    Returns system status including API, decoder, and cameras. Uploads
    keep working without a camera, so a missing camera is not degraded.
    """
    controller = HealthController(provider, engine)
    return await controller.get_health()


@router.get("/ready")
async def readiness_check():
    """Readiness check for container orchestration."""
    return {"ready": True}


@router.get("/live")
async def liveness_check():
    """Liveness check for container orchestration."""
    return {"alive": True}
