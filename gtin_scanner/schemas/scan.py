"""
==============================================================================
Scan Schemas Module
==============================================================================

Request and response schemas for scanning endpoints.

==============================================================================
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class StartRequest(BaseModel):
    """Camera start command."""
    device_index: Optional[int] = Field(default=None, ge=0)


class ManualEntryRequest(BaseModel):
    """GTIN typed in by the user."""
    text: str = Field(..., max_length=128)

    @field_validator("text")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Code cannot be empty")
        return v


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class DeviceResponse(BaseModel):
    """One camera."""
    index: int = Field(ge=0)
    device_id: str
    label: str


class DeviceListResponse(BaseModel):
    """Enumerated cameras."""
    success: bool = Field(default=True)
    devices: List[DeviceResponse]
    total: int = Field(ge=0)


class ScanResultResponse(BaseModel):
    """Decoded barcode value."""
    success: bool = Field(default=True)
    text: str
    source: str = Field(description="image or manual")
    symbology: Optional[str] = None
    rect: Optional[Dict[str, int]] = None
    timestamp: Optional[datetime] = None
