"""
==============================================================================
Camera Device Endpoints
==============================================================================

Lists the cameras a scanning session can use.

==============================================================================
"""

from fastapi import APIRouter, Depends

from gtin_scanner.capture import DeviceEnumerator, MediaDeviceProvider
from gtin_scanner.core.dependencies import get_device_provider
from gtin_scanner.schemas import DeviceListResponse, DeviceResponse


router = APIRouter(prefix="/devices", tags=["Devices"])


@router.get("", response_model=DeviceListResponse)
async def list_devices(provider: MediaDeviceProvider = Depends(get_device_provider)):
    """List video input devices in selection order."""
    devices = await DeviceEnumerator(provider).list_devices()
    return DeviceListResponse(
        devices=[
            DeviceResponse(index=i, device_id=d.device_id, label=d.label)
            for i, d in enumerate(devices)
        ],
        total=len(devices)
    )
