"""
==============================================================================
Capture Session Manager
==============================================================================

Owns the camera stream and the scan state machine.

States:
-------
    IDLE ──start()──▶ INITIALIZING ──acquired──▶ SCANNING ◀──resume()── PAUSED
                           │                        │  └────pause()─────▶
                           └──all tiers failed──▶ ERROR
    stop() returns to IDLE from every state.

Acquisition tiers:
------------------
1. Exact id of the selected device (skipped when none are enumerated)
2. Environment-facing (rear) camera
3. Any camera

Concurrency:
------------
Everything runs on one asyncio loop. Nothing is preempted; every await
that completes re-checks that its session (and poll handle) is still the
current one and discards its own result otherwise.

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import cv2
import numpy as np

from gtin_scanner.config import Settings, get_settings
from gtin_scanner.core import exceptions
from gtin_scanner.core.exceptions import AppException

from .enumerator import DeviceEnumerator
from .interfaces import CameraPermissionError, DecodeEngine, MediaDeviceProvider, StreamHandle
from .models import CaptureDevice, FrozenFrame, SessionState, StreamConstraints
from .poll_loop import FramePollLoop
from .still_image import StillImage, StillImageDecodePipeline


# Module logger
logger = logging.getLogger(__name__)


ScanCallback = Callable[[str], None]
StateCallback = Callable[[Dict[str, Any]], None]

NO_FRAME_MESSAGE = "No camera frame available to capture. Please try again."


class CaptureSession:
    """
    One live camera session.

    Exclusively owns its stream handle, poll handle and frozen frame.
    ``dispose()`` is the only teardown path and runs at most once.

    Every decode against the session (live tick or frozen frame) holds
    ``decode_lock``; a cancelled poll's in-flight tick keeps it until its
    decode returns.
    """

    def __init__(self) -> None:
        self.state = SessionState.INITIALIZING
        self.active_device_index: Optional[int] = None
        self.stream: Optional[StreamHandle] = None
        self.poll: Optional[FramePollLoop] = None
        self.frozen_frame: Optional[FrozenFrame] = None
        self.decode_lock = asyncio.Lock()
        self.delivered = False
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def cancel_poll(self) -> None:
        if self.poll is not None:
            self.poll.cancel()
            self.poll = None

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self.cancel_poll()
        if self.stream is not None:
            self.stream.stop()
            self.stream = None
        self.frozen_frame = None


class CaptureSessionManager:
    """
    Camera scanning state machine.

    Attributes:
        is_loading: Advisory flag set by the caller; input is ignored while True
        scan_error: Human-readable description of the current failure

    Example:
        >>> manager = CaptureSessionManager(provider, engine, pipeline, on_scan=print)
        >>> await manager.start()
        >>> manager.state
        <SessionState.SCANNING: 'scanning'>
        >>> manager.stop()
    """

    def __init__(
        self,
        provider: MediaDeviceProvider,
        engine: DecodeEngine,
        still_pipeline: StillImageDecodePipeline,
        on_scan: ScanCallback,
        on_state_change: Optional[StateCallback] = None,
        settings: Optional[Settings] = None
    ) -> None:
        self._provider = provider
        self._enumerator = DeviceEnumerator(provider)
        self._engine = engine
        self._pipeline = still_pipeline
        self._on_scan = on_scan
        self._on_state_change = on_state_change
        self._settings = settings or get_settings()

        self._session: Optional[CaptureSession] = None
        self._devices: List[CaptureDevice] = []
        self._preferred_index = 0
        self._acquiring: Optional[asyncio.Task] = None
        self._closed = False

        self.is_loading = False
        self.scan_error: Optional[str] = None
        self.scan_error_code: Optional[str] = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session else SessionState.IDLE

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def devices(self) -> List[CaptureDevice]:
        return list(self._devices)

    @property
    def active_device_index(self) -> Optional[int]:
        return self._session.active_device_index if self._session else None

    @property
    def frozen_frame(self) -> Optional[FrozenFrame]:
        return self._session.frozen_frame if self._session else None

    @property
    def camera_active(self) -> bool:
        return self.state in (
            SessionState.INITIALIZING, SessionState.SCANNING, SessionState.PAUSED
        )

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the manager for status reporting."""
        frozen = self.frozen_frame
        return {
            "state": self.state.value,
            "device_index": self.active_device_index,
            "devices": [d.to_dict() for d in self._devices],
            "can_switch": len(self._devices) > 1,
            "error": self.scan_error,
            "error_code": self.scan_error_code,
            "frozen_frame": (
                {"width": frozen.width, "height": frozen.height} if frozen else None
            ),
            "is_loading": self.is_loading,
        }

    # =========================================================================
    # CAMERA LIFECYCLE
    # =========================================================================

    async def list_devices(self) -> List[CaptureDevice]:
        self._devices = await self._enumerator.list_devices()
        return self.devices

    async def start(self, device_index: Optional[int] = None) -> None:
        """Open a camera and begin live scanning."""
        if self._closed:
            logger.warning("start() after close() ignored")
            return
        if self.is_loading:
            logger.info("start() ignored while loading")
            return
        if self.state not in (SessionState.IDLE, SessionState.ERROR):
            logger.warning(f"start() ignored in state {self.state.value}")
            return

        if device_index is not None:
            if isinstance(device_index, int) and not isinstance(device_index, bool) and device_index >= 0:
                self._preferred_index = device_index
            else:
                logger.warning(f"Ignoring invalid device index {device_index!r}")
        # An ERROR session is already disposed
        self._session = None
        await self._launch()

    async def switch_camera(self) -> None:
        """Tear down the current stream and scan with the next device."""
        session = self._session
        if len(self._devices) < 2:
            logger.info("switch_camera() needs more than one camera")
            return
        if session is None or session.state is not SessionState.SCANNING:
            logger.warning(f"switch_camera() ignored in state {self.state.value}")
            return

        current = session.active_device_index or 0
        self._preferred_index = (current + 1) % len(self._devices)
        logger.info(f"🔄 Switching camera {current} -> {self._preferred_index}")

        self._session = None
        session.dispose()
        await self._launch()

    def stop(self) -> None:
        """Release every session resource and return to IDLE. Idempotent."""
        session = self._session
        self._session = None
        self._clear_error()
        if session is None:
            return
        session.dispose()
        logger.info("🛑 Capture stopped")
        self._notify()

    def close(self) -> None:
        """Final teardown when the owner goes away."""
        self.stop()
        self._closed = True

    async def _launch(self) -> None:
        session = CaptureSession()
        self._session = session
        self._clear_error()
        self._notify()

        devices = await self._enumerator.list_devices()
        if self._session is not session:
            return
        self._devices = devices
        index = self._resolve_index(devices)
        session.active_device_index = index

        # Never overlap with an acquisition still held by a stale session
        previous = self._acquiring
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
            if self._session is not session:
                return

        # Shielded so a cancelled caller still lets the acquisition release
        # whatever it opens late
        self._acquiring = asyncio.ensure_future(self._acquire(session, devices, index))
        try:
            stream = await asyncio.shield(self._acquiring)
        except AppException as e:
            if self._session is session:
                self._fail(session, e)
            return
        except Exception as e:
            logger.exception(f"Camera acquisition crashed: {e}")
            if self._session is session:
                self._fail(session, exceptions.internal_error("Could not start the camera. Please try again."))
            return

        if stream is None:
            return

        session.stream = stream
        session.active_device_index = self._index_of(stream, devices, index)
        if session.active_device_index is not None:
            self._preferred_index = session.active_device_index
        session.state = SessionState.SCANNING
        self._start_polling(session)
        logger.info(
            f"📷 Scanning with camera {session.active_device_index} "
            f"of {len(devices)}"
        )
        self._notify()

    async def _acquire(
        self,
        session: CaptureSession,
        devices: List[CaptureDevice],
        index: Optional[int]
    ) -> Optional[StreamHandle]:
        tiers = [StreamConstraints.environment(), StreamConstraints.any_camera()]
        if index is not None:
            tiers.insert(0, StreamConstraints.exact(devices[index].device_id))

        denied = False
        for constraints in tiers:
            if self._session is not session:
                return None
            try:
                stream = await self._provider.acquire(constraints)
            except CameraPermissionError as e:
                denied = True
                logger.warning(f"Camera access denied ({constraints.describe()}): {e}")
                continue
            except Exception as e:
                logger.warning(f"Camera request failed ({constraints.describe()}): {e}")
                continue

            if self._session is not session or session.state is not SessionState.INITIALIZING:
                logger.info("Session ended during acquisition, releasing stream")
                stream.stop()
                return None
            return stream

        raise exceptions.permission_denied() if denied else exceptions.device_unavailable(len(tiers))

    def _resolve_index(self, devices: List[CaptureDevice]) -> Optional[int]:
        if not devices:
            return None
        if 0 <= self._preferred_index < len(devices):
            return self._preferred_index
        return 0

    @staticmethod
    def _index_of(
        stream: StreamHandle,
        devices: List[CaptureDevice],
        fallback: Optional[int]
    ) -> Optional[int]:
        for i, device in enumerate(devices):
            if device.device_id == stream.device_id:
                return i
        return fallback

    def _fail(self, session: CaptureSession, error: AppException) -> None:
        session.dispose()
        session.state = SessionState.ERROR
        self.scan_error = error.message
        self.scan_error_code = error.code
        logger.error(f"❌ Camera unavailable: {error.code}")
        self._notify()

    # =========================================================================
    # LIVE POLLING
    # =========================================================================

    def _start_polling(self, session: CaptureSession) -> None:
        """Shared by start() and resume()."""
        session.poll = FramePollLoop(
            lambda handle: self._poll_tick(session, handle),
            lambda: self._session is session and session.state is SessionState.SCANNING,
            self._settings.poll_interval_seconds
        ).start()

    def _is_polling(self, session: CaptureSession, handle: FramePollLoop) -> bool:
        return (
            self._session is session
            and session.state is SessionState.SCANNING
            and session.poll is handle
            and not handle.cancelled
        )

    async def _poll_tick(self, session: CaptureSession, handle: FramePollLoop) -> bool:
        result = None
        try:
            frame = await session.stream.read_frame()
            if not self._is_polling(session, handle):
                return True
            if frame is not None:
                async with session.decode_lock:
                    if not self._is_polling(session, handle):
                        return True
                    result = await self._engine.one_shot_decode(frame)
        except Exception as e:
            logger.warning(f"Decode attempt failed: {e}")

        if not self._is_polling(session, handle):
            logger.debug("Discarding stale decode result")
            return True
        if result is None:
            return False

        self._deliver(session, result.text)
        return True

    # =========================================================================
    # PAUSE / RESUME
    # =========================================================================

    async def pause(self) -> None:
        """Freeze the current frame and decode it once."""
        session = self._session
        if session is None or session.state is not SessionState.SCANNING:
            logger.warning(f"pause() ignored in state {self.state.value}")
            return

        frozen = self._freeze(session.stream.snapshot())
        if frozen is None:
            self.scan_error = NO_FRAME_MESSAGE
            self.scan_error_code = exceptions.UNREADABLE_IMAGE
            self._notify()
            return

        session.cancel_poll()
        session.frozen_frame = frozen
        session.state = SessionState.PAUSED
        self._clear_error()
        logger.info(f"⏸ Paused on {frozen.width}x{frozen.height} frame")
        self._notify()

        # Waits out a live tick still decoding
        async with session.decode_lock:
            if not self._paused_on(session, frozen):
                return
            try:
                result = await self._pipeline.decode(frozen)
            except AppException as e:
                if self._paused_on(session, frozen):
                    self.scan_error = e.message
                    self.scan_error_code = e.code
                    self._notify()
                return

        if self._paused_on(session, frozen):
            self._deliver(session, result.text)

    def resume(self) -> None:
        """Drop the frozen frame and continue live scanning."""
        session = self._session
        if session is None or session.state is not SessionState.PAUSED:
            logger.warning(f"resume() ignored in state {self.state.value}")
            return

        session.frozen_frame = None
        session.state = SessionState.SCANNING
        self._clear_error()
        self._start_polling(session)
        logger.info("▶ Resumed scanning")
        self._notify()

    def _paused_on(self, session: CaptureSession, frozen: FrozenFrame) -> bool:
        return (
            self._session is session
            and session.state is SessionState.PAUSED
            and session.frozen_frame is frozen
        )

    def _freeze(self, frame: Optional[np.ndarray]) -> Optional[FrozenFrame]:
        if frame is None or frame.size == 0:
            return None
        ok, buf = cv2.imencode(
            ".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self._settings.frozen_frame_quality]
        )
        if not ok:
            return None
        height, width = frame.shape[:2]
        return FrozenFrame(image_bytes=buf.tobytes(), width=width, height=height)

    # =========================================================================
    # RESULT DELIVERY
    # =========================================================================

    def _deliver(self, session: CaptureSession, text: str) -> None:
        if session.delivered:
            return
        session.delivered = True

        # Resources are released before the caller sees the value
        self._session = None
        session.dispose()
        self._clear_error()
        logger.info(f"✅ Scanned: {text}")
        self._notify()
        self._on_scan(text)

    # =========================================================================
    # CAMERA-FREE INPUT
    # =========================================================================

    async def scan_image(self, image: StillImage, filename: Optional[str] = None):
        """
        Decode an uploaded image and deliver its value.

        Returns:
            The DecodedResult, or None when ignored or unsuccessful
            (``scan_error`` then describes the failure)
        """
        if self.is_loading or self.camera_active:
            logger.info("Image upload ignored while camera is active or loading")
            return None

        self._clear_error()
        try:
            result = await self._pipeline.decode(image, filename)
        except AppException as e:
            self.scan_error = e.message
            self.scan_error_code = e.code
            self._notify()
            return None

        logger.info(f"✅ Scanned from image: {result.text}")
        self._on_scan(result.text)
        return result

    def submit_manual(self, text: str) -> Optional[str]:
        """Deliver a typed-in code. Blank input is ignored."""
        value = (text or "").strip()
        if not value or self.is_loading or self.camera_active:
            return None
        self._on_scan(value)
        return value

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _clear_error(self) -> None:
        self.scan_error = None
        self.scan_error_code = None

    def _notify(self) -> None:
        if self._on_state_change is not None:
            self._on_state_change(self.snapshot())
