"""
==============================================================================
Still Image & Manual Entry Endpoints
==============================================================================

Camera-free scanning: uploaded photos and typed-in codes.

==============================================================================
"""

import logging

from fastapi import APIRouter, Depends, File, UploadFile

from gtin_scanner.capture import StillImageDecodePipeline
from gtin_scanner.config import get_settings
from gtin_scanner.core import exceptions
from gtin_scanner.core.dependencies import get_still_image_pipeline
from gtin_scanner.schemas import ManualEntryRequest, ScanResultResponse


# Module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scan", tags=["Scan"])


class ScanController:
    """Controller for still image scans."""

    def __init__(self, pipeline: StillImageDecodePipeline):
        self._pipeline = pipeline
        self._limit = get_settings().max_upload_bytes

    async def scan_upload(self, upload: UploadFile) -> ScanResultResponse:
        """Decode a barcode from an uploaded image."""
        data = await upload.read()
        if len(data) > self._limit:
            raise exceptions.image_too_large(len(data), self._limit)

        logger.info(f"📤 Upload {upload.filename!r} ({len(data)} bytes)")
        result = await self._pipeline.decode(data, upload.filename)

        return ScanResultResponse(
            text=result.text,
            source="image",
            symbology=result.symbology,
            rect=result.rect,
            timestamp=result.timestamp
        )


@router.post("/image", response_model=ScanResultResponse)
async def scan_image(
    file: UploadFile = File(...),
    pipeline: StillImageDecodePipeline = Depends(get_still_image_pipeline)
):
    """
    Decode a barcode from an uploaded photo.

    HEIC/HEIF photos are converted before decoding. Failures return a
    retryable error body.
    """
    controller = ScanController(pipeline)
    return await controller.scan_upload(file)


@router.post("/manual", response_model=ScanResultResponse)
async def scan_manual(body: ManualEntryRequest):
    """Accept a GTIN typed in by the user."""
    return ScanResultResponse(text=body.text, source="manual")
