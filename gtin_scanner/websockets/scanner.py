"""
==============================================================================
Scanner WebSocket Module
==============================================================================

Camera scanning controlled over a WebSocket connection.

Each connection owns one CaptureSessionManager; disconnecting tears the
camera down.

Protocol:
---------
Client -> server:
    {"type": "start", "device_index": 0}       open a camera and scan
    {"type": "pause"} / {"type": "resume"}     freeze / unfreeze
    {"type": "switch"}                         next camera
    {"type": "stop"}                           close the camera
    {"type": "loading", "value": true}         disable input
    {"type": "image", "data": "<base64>", "filename": "x.heic"}
    {"type": "manual", "text": "5012345678900"}
    {"type": "devices"}

Server -> client:
    {"type": "state", "state": "scanning", "device_index": 0, ...}
    {"type": "scan", "text": "5012345678900"}
    {"type": "devices", "devices": [...]}
    {"type": "error", "code": "...", "message": "..."}

==============================================================================
"""

import asyncio
import base64
import binascii
import logging
from typing import Any, Dict, Set

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from gtin_scanner.capture import (
    CaptureSessionManager,
    DecodeEngine,
    MediaDeviceProvider,
    SessionState,
    StillImageDecodePipeline,
)
from gtin_scanner.core import exceptions
from gtin_scanner.core.exceptions import AppException
from gtin_scanner.core.dependencies import (
    get_decode_engine,
    get_device_provider,
    get_still_image_pipeline,
)
from gtin_scanner.schemas import StartRequest


# Module logger
logger = logging.getLogger(__name__)

router = APIRouter()

# Commands that may wait on the camera or a decode run as tasks so that
# "stop" is still handled while they are pending
BACKGROUND_COMMANDS = {"start", "switch", "pause", "image"}


class ScannerWebSocketHandler:
    """
    Handler for camera scanning WebSocket connections.

    Manages the lifecycle of a scanning session including:
    - Command dispatch to the capture session manager
    - Forwarding state changes and scan results
    - Camera teardown on disconnect
    """

    def __init__(
        self,
        websocket: WebSocket,
        provider: MediaDeviceProvider,
        engine: DecodeEngine,
        pipeline: StillImageDecodePipeline
    ):
        self._websocket = websocket
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._tasks: Set[asyncio.Task] = set()
        self._manager = CaptureSessionManager(
            provider,
            engine,
            pipeline,
            on_scan=self._on_scan,
            on_state_change=self._on_state_change
        )

    @property
    def manager(self) -> CaptureSessionManager:
        return self._manager

    # =========================================================================
    # OUTGOING
    # =========================================================================

    def _on_scan(self, text: str) -> None:
        self._outbox.put_nowait({"type": "scan", "text": text})

    def _on_state_change(self, snapshot: Dict[str, Any]) -> None:
        self._outbox.put_nowait({"type": "state", **snapshot})

    def _queue_error(self, message: str, code: str = "ERROR") -> None:
        self._outbox.put_nowait({"type": "error", "code": code, "message": message})

    def _reject(self, error: AppException) -> None:
        logger.info(f"Command rejected: {error.code}")
        self._queue_error(error.message, error.code)

    def _expect(self, state: SessionState) -> bool:
        if self._manager.state is state:
            return True
        self._reject(exceptions.invalid_state(self._manager.state.value, state.value))
        return False

    def _busy(self) -> bool:
        if self._manager.camera_active or self._manager.is_loading:
            self._reject(exceptions.scanner_busy())
            return True
        return False

    async def _pump(self) -> None:
        while True:
            message = await self._outbox.get()
            await self._websocket.send_json(message)

    # =========================================================================
    # INCOMING
    # =========================================================================

    async def handle_message(self, data: dict) -> None:
        """Dispatch one client message."""
        kind = data.get("type")
        manager = self._manager

        if kind == "start":
            try:
                request = StartRequest.model_validate(data)
            except ValidationError as e:
                self._reject(exceptions.invalid_request(e.errors()[0]["msg"]))
                return
            await manager.start(request.device_index)
        elif kind == "pause":
            if self._expect(SessionState.SCANNING):
                await manager.pause()
        elif kind == "resume":
            if self._expect(SessionState.PAUSED):
                manager.resume()
        elif kind == "switch":
            if self._expect(SessionState.SCANNING):
                await manager.switch_camera()
        elif kind == "stop":
            manager.stop()
        elif kind == "loading":
            manager.is_loading = bool(data.get("value"))
            self._on_state_change(manager.snapshot())
        elif kind == "image":
            if not self._busy():
                await self.handle_image(data)
        elif kind == "manual":
            if not self._busy() and manager.submit_manual(data.get("text", "")) is None:
                self._queue_error("Enter a code to search", "EMPTY_INPUT")
        elif kind == "devices":
            devices = await manager.list_devices()
            self._outbox.put_nowait({
                "type": "devices",
                "devices": [d.to_dict() for d in devices]
            })
        else:
            self._queue_error(f"Unknown message type: {kind}", "UNKNOWN_MESSAGE")

    async def handle_image(self, data: dict) -> None:
        """Decode a base64 image sent by the client."""
        try:
            raw = base64.b64decode(data.get("data", ""), validate=True)
        except (binascii.Error, ValueError):
            self._queue_error("Image data is not valid base64", "INVALID_IMAGE_DATA")
            return

        await self._manager.scan_image(raw, data.get("filename"))

    def _spawn(self, data: dict) -> None:
        task = asyncio.create_task(self._guarded(data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guarded(self, data: dict) -> None:
        try:
            await self.handle_message(data)
        except Exception as e:
            logger.error(f"Command {data.get('type')} failed: {e}")
            self._reject(exceptions.internal_error())

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    async def run(self) -> None:
        """Main handler loop."""
        await self._websocket.accept()
        logger.info("📱 Scanner WebSocket connected")

        pump = asyncio.create_task(self._pump())
        self._on_state_change(self._manager.snapshot())

        try:
            while True:
                data = await self._websocket.receive_json()
                if data.get("type") in BACKGROUND_COMMANDS:
                    self._spawn(data)
                else:
                    await self._guarded(data)

        except WebSocketDisconnect:
            logger.info("📱 Client disconnected")
        finally:
            self._manager.close()
            for task in list(self._tasks):
                task.cancel()
            pump.cancel()
            await asyncio.gather(pump, *self._tasks, return_exceptions=True)
            logger.info("✅ Scanner WebSocket closed")


@router.websocket("/ws/scan")
async def websocket_scan(
    websocket: WebSocket,
    provider: MediaDeviceProvider = Depends(get_device_provider),
    engine: DecodeEngine = Depends(get_decode_engine),
    pipeline: StillImageDecodePipeline = Depends(get_still_image_pipeline)
):
    """Camera barcode scanning via WebSocket."""
    handler = ScannerWebSocketHandler(websocket, provider, engine, pipeline)
    await handler.run()
