"""
==============================================================================
Schemas Package - Pydantic Models
==============================================================================

Request and response schemas using Pydantic for validation.

==============================================================================
"""

from .scan import (
    DeviceListResponse,
    DeviceResponse,
    ManualEntryRequest,
    ScanResultResponse,
    StartRequest,
)

__all__ = [
    "DeviceListResponse",
    "DeviceResponse",
    "ManualEntryRequest",
    "ScanResultResponse",
    "StartRequest",
]
