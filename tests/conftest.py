"""
==============================================================================
Pytest Configuration and Fixtures
==============================================================================

Provides fake camera/decoder/codec components, a synthetic EAN-13 image
and a TestClient with the capture dependencies overridden.

==============================================================================
"""

import asyncio
from typing import Dict, Generator, List, Optional

import cv2
import numpy as np
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from gtin_scanner.capture import (
    CaptureSessionManager,
    DecodeEngine,
    DecodedResult,
    DeviceInfo,
    DeviceNotFoundError,
    ImageCodecBridge,
    MediaDeviceProvider,
    StillImageDecodePipeline,
    StreamConstraints,
    StreamHandle,
)
from gtin_scanner.config import Settings
from gtin_scanner.core.dependencies import (
    get_codec_bridge,
    get_decode_engine,
    get_device_provider,
)
from gtin_scanner.main import app


# ============================================================================
# SYNTHETIC BARCODE
# ============================================================================

_L = ["0001101", "0011001", "0010011", "0111101", "0100011",
      "0110001", "0101111", "0111011", "0110111", "0001011"]
_G = ["0100111", "0110011", "0011011", "0100001", "0011101",
      "0111001", "0000101", "0010001", "0001001", "0010111"]
_R = ["1110010", "1100110", "1101100", "1000010", "1011100",
      "1001110", "1010000", "1000100", "1001000", "1110100"]
_PARITY = ["LLLLLL", "LLGLGG", "LLGGLG", "LLGGGL", "LGLLGG",
           "LGGLLG", "LGGGLL", "LGLGLG", "LGLGGL", "LGGLGL"]

EAN13 = "5012345678900"


def render_ean13(code: str = EAN13, module: int = 3, height: int = 120) -> np.ndarray:
    """Draw an EAN-13 symbol as a BGR image."""
    digits = [int(c) for c in code]
    parity = _PARITY[digits[0]]
    bits = "101"
    for d, p in zip(digits[1:7], parity):
        bits += _L[d] if p == "L" else _G[d]
    bits += "01010"
    for d in digits[7:]:
        bits += _R[d]
    bits += "101"

    quiet = "0" * 12
    row = np.array([0 if b == "1" else 255 for b in quiet + bits + quiet], dtype=np.uint8)
    row = np.repeat(row, module)
    gray = np.tile(row, (height, 1))
    gray = cv2.copyMakeBorder(gray, 20, 20, 0, 0, cv2.BORDER_CONSTANT, value=255)
    return cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)


def encode_image(frame: np.ndarray, ext: str = ".png") -> bytes:
    ok, buf = cv2.imencode(ext, frame)
    assert ok
    return buf.tobytes()


def blank_frame(width: int = 64, height: int = 48) -> np.ndarray:
    return np.full((height, width, 3), 255, dtype=np.uint8)


# A minimal ISO-BMFF header with a HEIC brand
HEIC_HEADER = b"\x00\x00\x00\x18ftypheic\x00\x00\x00\x00mif1heic"


# ============================================================================
# FAKE COMPONENTS
# ============================================================================

class FakeStream(StreamHandle):
    """Stream returning a fixed frame; reports open/close to its provider."""

    def __init__(self, provider: "FakeProvider", device_id: str, frame: np.ndarray):
        self._provider = provider
        self._device_id = device_id
        self._frame = frame
        self._active = True
        self.reads = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def device_id(self) -> Optional[str]:
        return self._device_id

    async def read_frame(self) -> Optional[np.ndarray]:
        self.reads += 1
        return self._frame if self._active else None

    def snapshot(self) -> Optional[np.ndarray]:
        return self._frame.copy() if self._active else None

    def stop(self) -> None:
        if self._active:
            self._active = False
            self._provider.on_stream_stopped(self)


class FakeProvider(MediaDeviceProvider):
    """
    In-memory camera provider.

    ``failures`` maps a constraint kind ("exact", "environment", "any") to
    the exception raised for it. ``gate`` holds acquisition until set.
    """

    def __init__(self, devices: Optional[List[DeviceInfo]] = None, frame=None):
        self.devices = devices if devices is not None else [DeviceInfo("cam-a", "Back Camera")]
        self.frame = frame if frame is not None else blank_frame()
        self.failures: Dict[str, Exception] = {}
        self.requests: List[StreamConstraints] = []
        self.events: List[str] = []
        self.open_streams: List[FakeStream] = []
        self.max_open = 0
        self.enumerate_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    @staticmethod
    def kind(constraints: StreamConstraints) -> str:
        if constraints.device_id is not None:
            return "exact"
        if constraints.facing_mode is not None:
            return "environment"
        return "any"

    async def enumerate(self) -> List[DeviceInfo]:
        if self.enumerate_error is not None:
            raise self.enumerate_error
        return list(self.devices)

    async def acquire(self, constraints: StreamConstraints) -> StreamHandle:
        self.requests.append(constraints)
        if self.gate is not None:
            await self.gate.wait()
        failure = self.failures.get(self.kind(constraints))
        if failure is not None:
            raise failure

        cameras = [d for d in self.devices if d.kind == "videoinput"]
        if constraints.device_id is not None:
            device_id = constraints.device_id
        elif cameras:
            device_id = cameras[0].device_id
        else:
            raise DeviceNotFoundError("no cameras")

        stream = FakeStream(self, device_id, self.frame)
        self.open_streams.append(stream)
        self.max_open = max(self.max_open, len(self.open_streams))
        self.events.append(f"open:{device_id}")
        return stream

    def on_stream_stopped(self, stream: FakeStream) -> None:
        self.open_streams.remove(stream)
        self.events.append(f"stop:{stream.device_id}")


class ScriptedEngine(DecodeEngine):
    """
    Decode engine returning queued outcomes, then ``default``.

    ``gate`` (when set) holds every call until released.
    """

    def __init__(self, default: Optional[DecodedResult] = None):
        self.default = default
        self.queue: List[Optional[DecodedResult]] = []
        self.calls = 0
        self.frames: List[np.ndarray] = []
        self.gate: Optional[asyncio.Event] = None
        self.waiting = False
        self.inflight = 0
        self.max_inflight = 0

    async def one_shot_decode(self, frame: np.ndarray) -> Optional[DecodedResult]:
        self.calls += 1
        self.frames.append(frame)
        self.inflight += 1
        self.max_inflight = max(self.max_inflight, self.inflight)
        try:
            if self.gate is not None:
                self.waiting = True
                await self.gate.wait()
                self.waiting = False
            if self.queue:
                return self.queue.pop(0)
            return self.default
        finally:
            self.inflight -= 1


class FakeBridge(ImageCodecBridge):
    """Codec bridge returning a fixed PNG, or raising when ``fail`` is set."""

    def __init__(self, output: Optional[bytes] = None):
        self.output = output if output is not None else encode_image(blank_frame())
        self.fail = False
        self.calls: List[str] = []

    async def transcode(self, raw: bytes, source_format: str) -> bytes:
        self.calls.append(source_format)
        if self.fail:
            raise ValueError("corrupt container")
        return self.output


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate()`` is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


def found(text: str = EAN13) -> DecodedResult:
    return DecodedResult(text=text, symbology="EAN13")


# ============================================================================
# COMPONENT FIXTURES
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    """Settings with a fast poll interval."""
    return Settings(poll_interval_ms=1)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def engine() -> ScriptedEngine:
    return ScriptedEngine()


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def pipeline(engine: ScriptedEngine, bridge: FakeBridge) -> StillImageDecodePipeline:
    return StillImageDecodePipeline(engine, bridge)


@pytest.fixture
def scans() -> List[str]:
    """Values delivered through on_scan."""
    return []


@pytest.fixture
def states() -> List[str]:
    """State names reported through on_state_change."""
    return []


@pytest_asyncio.fixture
async def manager(provider, engine, pipeline, settings, scans, states):
    manager = CaptureSessionManager(
        provider,
        engine,
        pipeline,
        on_scan=scans.append,
        on_state_change=lambda snap: states.append(snap["state"]),
        settings=settings
    )
    yield manager
    manager.close()


# ============================================================================
# CLIENT FIXTURES
# ============================================================================

@pytest.fixture
def client(provider, engine, bridge) -> Generator[TestClient, None, None]:
    """Test client with fake capture components."""
    app.dependency_overrides[get_device_provider] = lambda: provider
    app.dependency_overrides[get_decode_engine] = lambda: engine
    app.dependency_overrides[get_codec_bridge] = lambda: bridge

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
