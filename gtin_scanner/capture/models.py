"""
==============================================================================
Capture Data Models
==============================================================================

Value types shared by the capture subsystem.

Classes:
--------
- SessionState: Capture session state machine states
- CaptureDevice: One enumerated camera
- DeviceInfo: Raw device entry reported by a provider (any kind)
- StreamConstraints: Acquisition request passed to a provider
- FrozenFrame: Snapshot taken when the live scan is paused
- DecodedResult: Decode engine output

==============================================================================
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional


VIDEO_INPUT = "videoinput"
ENVIRONMENT_FACING = "environment"


class SessionState(str, enum.Enum):
    """States of a capture session."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    SCANNING = "scanning"
    PAUSED = "paused"
    ERROR = "error"


@dataclass(frozen=True)
class DeviceInfo:
    """Raw device entry as reported by a media device provider."""

    device_id: str
    label: str
    kind: str = VIDEO_INPUT


@dataclass(frozen=True)
class CaptureDevice:
    """A camera-class capture device. Immutable once enumerated."""

    device_id: str
    label: str

    def to_dict(self) -> Dict[str, str]:
        return {"device_id": self.device_id, "label": self.label}


@dataclass(frozen=True)
class StreamConstraints:
    """
    Acquisition request.

    Exactly one of ``device_id`` or ``facing_mode`` is set for a constrained
    request; both None means "any camera".
    """

    device_id: Optional[str] = None
    facing_mode: Optional[str] = None

    @classmethod
    def exact(cls, device_id: str) -> "StreamConstraints":
        return cls(device_id=device_id)

    @classmethod
    def environment(cls) -> "StreamConstraints":
        return cls(facing_mode=ENVIRONMENT_FACING)

    @classmethod
    def any_camera(cls) -> "StreamConstraints":
        return cls()

    def describe(self) -> str:
        if self.device_id is not None:
            return f"device={self.device_id}"
        if self.facing_mode is not None:
            return f"facing={self.facing_mode}"
        return "any"


@dataclass(frozen=True)
class FrozenFrame:
    """JPEG snapshot of the live stream captured at pause time."""

    image_bytes: bytes
    width: int
    height: int


@dataclass(frozen=True)
class DecodedResult:
    """A decoded symbol. Only ``text`` is meaningful to callers."""

    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    symbology: Optional[str] = None
    rect: Optional[Dict[str, int]] = None

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "symbology": self.symbology,
            "rect": self.rect,
        }
