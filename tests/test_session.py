"""
==============================================================================
Capture Session Manager Tests
==============================================================================

State machine, acquisition fallbacks, polling, pause/resume, switching
and result delivery.

==============================================================================
"""

import asyncio
import random

import pytest

from gtin_scanner.capture import (
    CameraPermissionError,
    CaptureSessionManager,
    DeviceInfo,
    DeviceNotFoundError,
    SessionState,
    StreamConstraints,
)
from gtin_scanner.core import exceptions

from conftest import EAN13, HEIC_HEADER, blank_frame, encode_image, found, wait_until


def kinds(provider):
    return [provider.kind(c) for c in provider.requests]


def assert_invariants(manager, provider):
    assert provider.max_open <= 1
    session = manager.session
    if session is None:
        assert manager.state is SessionState.IDLE
        return
    assert (session.poll is not None) == (session.state is SessionState.SCANNING)
    assert (session.frozen_frame is not None) == (session.state is SessionState.PAUSED)
    if session.active_device_index is not None:
        assert 0 <= session.active_device_index < len(manager.devices)


class TestStart:
    """Tests for camera acquisition."""

    @pytest.mark.asyncio
    async def test_single_camera_reaches_scanning(self, manager, provider, states):
        """Test Idle -> Initializing -> Scanning with one camera."""
        await manager.start()

        assert states[:2] == ["initializing", "scanning"]
        assert manager.state is SessionState.SCANNING
        assert manager.active_device_index == 0
        assert kinds(provider) == ["exact"]
        assert manager.session.poll.running
        assert manager.scan_error is None

    @pytest.mark.asyncio
    async def test_zero_devices_tries_environment_then_any(self, manager, provider):
        """Test every fallback is attempted before DEVICE_UNAVAILABLE."""
        provider.devices = []

        await manager.start()

        assert kinds(provider) == ["environment", "any"]
        assert manager.state is SessionState.ERROR
        assert manager.scan_error_code == exceptions.DEVICE_UNAVAILABLE
        assert manager.active_device_index is None
        assert provider.open_streams == []
        assert manager.session.poll is None

    @pytest.mark.asyncio
    async def test_permission_denied(self, manager, provider):
        """Test a refused camera puts the session in ERROR."""
        for kind in ("exact", "environment", "any"):
            provider.failures[kind] = CameraPermissionError("denied")

        await manager.start()

        assert kinds(provider) == ["exact", "environment", "any"]
        assert manager.state is SessionState.ERROR
        assert manager.scan_error_code == exceptions.PERMISSION_DENIED
        assert manager.scan_error == "Camera access denied. Please allow camera permissions."

    @pytest.mark.asyncio
    async def test_retry_after_error(self, manager, provider):
        """Test start() works again once permission is granted."""
        provider.failures["exact"] = CameraPermissionError("denied")
        provider.failures["environment"] = CameraPermissionError("denied")
        provider.failures["any"] = CameraPermissionError("denied")
        await manager.start()
        assert manager.state is SessionState.ERROR

        provider.failures.clear()
        await manager.start()

        assert manager.state is SessionState.SCANNING
        assert manager.scan_error is None

    @pytest.mark.asyncio
    async def test_exact_failure_falls_back_to_environment(self, manager, provider):
        """Test the first successful tier wins."""
        provider.failures["exact"] = DeviceNotFoundError("busy")

        await manager.start()

        assert kinds(provider) == ["exact", "environment"]
        assert manager.state is SessionState.SCANNING
        assert manager.active_device_index == 0

    @pytest.mark.asyncio
    async def test_enumeration_failure_is_empty_list(self, manager, provider):
        """Test a failing enumeration falls back to unconstrained requests."""
        provider.enumerate_error = RuntimeError("enumerate failed")

        await manager.start()

        assert kinds(provider) == ["environment"]
        assert manager.state is SessionState.SCANNING
        assert manager.active_device_index is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_index", ["1", 1.5, -1, True])
    async def test_invalid_device_index_ignored(self, manager, provider, bad_index):
        """Test a malformed index neither sticks nor blocks a later start()."""
        await manager.start(bad_index)

        assert manager.state is SessionState.SCANNING
        assert manager.active_device_index == 0
        assert kinds(provider) == ["exact"]

        manager.stop()
        await manager.start()
        assert manager.state is SessionState.SCANNING

    @pytest.mark.asyncio
    async def test_unexpected_acquisition_error(self, manager, provider, monkeypatch):
        """Test a crash while acquiring ends in ERROR, not INITIALIZING."""
        def broken(cls, device_id):
            raise ZeroDivisionError("boom")

        monkeypatch.setattr(StreamConstraints, "exact", classmethod(broken))
        await manager.start()

        assert manager.state is SessionState.ERROR
        assert manager.scan_error_code == exceptions.INTERNAL_ERROR
        assert provider.open_streams == []

        monkeypatch.undo()
        await manager.start()
        assert manager.state is SessionState.SCANNING

    @pytest.mark.asyncio
    async def test_start_ignored_while_loading(self, manager, provider):
        """Test is_loading disables start()."""
        manager.is_loading = True

        await manager.start()

        assert manager.state is SessionState.IDLE
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_start_ignored_while_scanning(self, manager, provider):
        """Test a second start() does not open another stream."""
        await manager.start()
        await manager.start()

        assert len(provider.requests) == 1
        assert provider.max_open == 1


class TestStop:
    """Tests for teardown."""

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, manager, provider):
        """Test stop() from IDLE and twice after scanning."""
        manager.stop()
        await manager.start()
        manager.stop()
        manager.stop()

        assert manager.state is SessionState.IDLE
        assert provider.open_streams == []
        assert manager.session is None

    @pytest.mark.asyncio
    async def test_stop_from_error(self, manager, provider):
        """Test stop() clears an ERROR session."""
        provider.devices = []
        await manager.start()

        manager.stop()

        assert manager.state is SessionState.IDLE
        assert manager.scan_error is None

    @pytest.mark.asyncio
    async def test_stop_during_acquisition_releases_late_stream(self, manager, provider):
        """Test a stream granted after stop() is released immediately."""
        provider.gate = asyncio.Event()
        task = asyncio.create_task(manager.start())
        await wait_until(lambda: provider.requests)
        assert manager.state is SessionState.INITIALIZING

        manager.stop()
        provider.gate.set()
        await task

        assert manager.state is SessionState.IDLE
        assert provider.open_streams == []
        assert provider.events == ["open:cam-a", "stop:cam-a"]

    @pytest.mark.asyncio
    async def test_restart_waits_for_stale_acquisition(self, manager, provider):
        """Test a new start() never overlaps a pending acquisition."""
        provider.gate = asyncio.Event()
        first = asyncio.create_task(manager.start())
        await wait_until(lambda: provider.requests)
        manager.stop()

        second = asyncio.create_task(manager.start())
        await asyncio.sleep(0.01)
        assert len(provider.requests) == 1

        provider.gate.set()
        await first
        await second

        assert manager.state is SessionState.SCANNING
        assert provider.max_open == 1
        assert len(provider.open_streams) == 1

    @pytest.mark.asyncio
    async def test_stop_discards_in_flight_decode(self, manager, provider, engine, scans):
        """Test a decode resolving after stop() neither delivers nor reschedules."""
        engine.gate = asyncio.Event()
        engine.default = found()
        await manager.start()
        await wait_until(lambda: engine.waiting)

        manager.stop()
        engine.gate.set()
        await asyncio.sleep(0.02)

        assert scans == []
        assert engine.calls == 1
        assert manager.state is SessionState.IDLE
        assert provider.open_streams == []


class TestPolling:
    """Tests for live decoding and result delivery."""

    @pytest.mark.asyncio
    async def test_keeps_polling_until_found(self, manager, engine, scans):
        """Test misses reschedule and a hit delivers once."""
        engine.queue = [None, None, found()]

        await manager.start()
        await wait_until(lambda: scans)

        assert scans == [EAN13]
        assert engine.calls == 3

    @pytest.mark.asyncio
    async def test_success_schedules_no_more_ticks(self, manager, provider, engine, scans):
        """Test a hit tears the session down and stops ticking."""
        engine.default = found()
        await manager.start()
        await wait_until(lambda: scans)
        calls = engine.calls

        await asyncio.sleep(0.02)

        assert engine.calls == calls == 1
        assert scans == [EAN13]
        assert manager.state is SessionState.IDLE
        assert provider.open_streams == []

    @pytest.mark.asyncio
    async def test_result_delivered_after_teardown(self, provider, engine, pipeline, settings):
        """Test on_scan only runs once the stream is released."""
        seen = []
        manager = CaptureSessionManager(
            provider,
            engine,
            pipeline,
            on_scan=lambda text: seen.append((text, list(provider.open_streams), manager.state)),
            settings=settings
        )
        engine.default = found()

        await manager.start()
        await wait_until(lambda: seen)

        assert seen == [(EAN13, [], SessionState.IDLE)]

    @pytest.mark.asyncio
    async def test_decode_error_counts_as_miss(self, manager, engine, scans):
        """Test an exception from the engine keeps polling."""
        outcomes = [RuntimeError("zbar"), found()]

        async def flaky(frame):
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        engine.one_shot_decode = flaky
        await manager.start()
        await wait_until(lambda: scans)

        assert scans == [EAN13]
        assert outcomes == []


class TestPauseResume:
    """Tests for freezing a frame."""

    @pytest.mark.asyncio
    async def test_pause_freezes_and_decodes_once(self, manager, engine):
        """Test pause() stops polling and runs one still decode."""
        await manager.start()
        await wait_until(lambda: engine.calls >= 2)
        before = engine.calls

        await manager.pause()

        assert manager.state is SessionState.PAUSED
        assert manager.session.poll is None
        frozen = manager.frozen_frame
        assert (frozen.width, frozen.height) == (64, 48)
        assert frozen.image_bytes.startswith(b"\xff\xd8\xff")
        assert engine.calls == before + 1
        assert manager.scan_error_code == exceptions.DECODE_NOT_FOUND
        assert "captured image" in manager.scan_error

        await asyncio.sleep(0.02)
        assert engine.calls == before + 1

    @pytest.mark.asyncio
    async def test_resume_restarts_polling(self, manager, engine):
        """Test pause() then resume() returns to SCANNING."""
        await manager.start()
        await manager.pause()
        paused_calls = engine.calls

        manager.resume()

        assert manager.state is SessionState.SCANNING
        assert manager.frozen_frame is None
        assert manager.scan_error is None
        assert manager.session.poll.running
        await wait_until(lambda: engine.calls > paused_calls)

    @pytest.mark.asyncio
    async def test_pause_decode_success_delivers(self, manager, provider, engine, scans):
        """Test a barcode found in the frozen frame ends the session."""
        await manager.start()
        await wait_until(lambda: engine.calls >= 1)
        engine.queue = [found()]

        await manager.pause()

        assert scans == [EAN13]
        assert manager.state is SessionState.IDLE
        assert provider.open_streams == []

    @pytest.mark.asyncio
    async def test_pause_waits_for_in_flight_tick(self, manager, engine):
        """Test the frozen decode starts only after the live decode returns."""
        engine.gate = asyncio.Event()
        await manager.start()
        await wait_until(lambda: engine.waiting)

        task = asyncio.create_task(manager.pause())
        await wait_until(lambda: manager.state is SessionState.PAUSED)
        await asyncio.sleep(0.01)
        assert engine.calls == 1

        engine.gate.set()
        await task

        assert engine.calls == 2
        assert engine.max_inflight == 1
        assert manager.state is SessionState.PAUSED
        assert manager.scan_error_code == exceptions.DECODE_NOT_FOUND

    @pytest.mark.asyncio
    async def test_resume_while_tick_in_flight(self, manager, engine):
        """Test resumed polling never overlaps the cancelled loop's decode."""
        engine.gate = asyncio.Event()
        await manager.start()
        await wait_until(lambda: engine.waiting)
        pause = asyncio.create_task(manager.pause())
        await wait_until(lambda: manager.state is SessionState.PAUSED)

        manager.resume()
        await asyncio.sleep(0.01)
        assert engine.calls == 1

        engine.gate.set()
        await pause
        await wait_until(lambda: engine.calls >= 3)

        assert engine.max_inflight == 1
        assert manager.state is SessionState.SCANNING
        assert manager.frozen_frame is None

    @pytest.mark.asyncio
    async def test_stop_during_frozen_decode(self, manager, engine, scans):
        """Test a frozen-frame result landing after stop() is dropped."""
        await manager.start()
        await wait_until(lambda: engine.calls >= 1)
        engine.gate = asyncio.Event()
        engine.queue = [found()]

        task = asyncio.create_task(manager.pause())
        await wait_until(lambda: engine.waiting)
        manager.stop()
        engine.gate.set()
        await task

        assert scans == []
        assert manager.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_pause_and_resume_outside_valid_states(self, manager, engine):
        """Test pause()/resume() are no-ops in the wrong state."""
        await manager.pause()
        manager.resume()
        assert manager.state is SessionState.IDLE

        await manager.start()
        manager.resume()
        assert manager.state is SessionState.SCANNING
        assert manager.frozen_frame is None


class TestSwitchCamera:
    """Tests for cycling through cameras."""

    @pytest.fixture
    def provider(self, provider):
        provider.devices = [
            DeviceInfo("cam-a", "Front Camera"),
            DeviceInfo("cam-b", "Back Camera"),
            DeviceInfo("mic", "Microphone", kind="audioinput"),
        ]
        return provider

    @pytest.mark.asyncio
    async def test_switch_releases_before_acquiring(self, manager, provider):
        """Test A is fully released before B is opened."""
        await manager.start()
        assert manager.active_device_index == 0

        await manager.switch_camera()

        assert provider.events == ["open:cam-a", "stop:cam-a", "open:cam-b"]
        assert manager.active_device_index == 1
        assert manager.state is SessionState.SCANNING
        assert provider.max_open == 1

    @pytest.mark.asyncio
    async def test_switch_wraps_around(self, manager, provider):
        """Test the index cycles modulo the device count."""
        await manager.start()
        await manager.switch_camera()
        await manager.switch_camera()

        assert manager.active_device_index == 0
        assert provider.events[-1] == "open:cam-a"

    @pytest.mark.asyncio
    async def test_switch_ignored_when_paused(self, manager, provider):
        """Test switching only happens from SCANNING."""
        await manager.start()
        await manager.pause()

        await manager.switch_camera()

        assert manager.state is SessionState.PAUSED
        assert provider.events == ["open:cam-a"]

    @pytest.mark.asyncio
    async def test_selected_camera_survives_restart(self, manager, provider):
        """Test the chosen device is reused by the next start()."""
        await manager.start()
        await manager.switch_camera()
        manager.stop()

        await manager.start()

        assert manager.active_device_index == 1

    @pytest.mark.asyncio
    async def test_random_operations_keep_invariants(self, manager, provider, engine):
        """Test stream/poll/frame invariants across mixed operations."""
        rng = random.Random(7)
        operations = ["start", "stop", "pause", "resume", "switch"]

        for _ in range(60):
            op = rng.choice(operations)
            if op == "start":
                await manager.start()
            elif op == "stop":
                manager.stop()
            elif op == "pause":
                await manager.pause()
            elif op == "resume":
                manager.resume()
            else:
                await manager.switch_camera()
            assert_invariants(manager, provider)
            await asyncio.sleep(0)

        manager.stop()
        assert provider.open_streams == []


@pytest.mark.asyncio
async def test_switch_ignored_with_single_camera(manager, provider):
    """Test switch_camera() needs more than one device."""
    await manager.start()

    await manager.switch_camera()

    assert provider.events == ["open:cam-a"]
    assert manager.state is SessionState.SCANNING


class TestCameraFreeInput:
    """Tests for uploads and manual entry through the manager."""

    @pytest.mark.asyncio
    async def test_scan_image_delivers(self, manager, engine, scans):
        """Test an uploaded image is decoded and delivered."""
        engine.default = found()

        result = await manager.scan_image(encode_image(blank_frame()), "photo.png")

        assert result.text == EAN13
        assert scans == [EAN13]
        assert manager.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_scan_image_not_found_sets_error(self, manager, scans):
        """Test a miss becomes a retryable message."""
        result = await manager.scan_image(encode_image(blank_frame()), "photo.png")

        assert result is None
        assert scans == []
        assert manager.scan_error == "No barcode detected in image."

    @pytest.mark.asyncio
    async def test_scan_image_transcode_failure(self, manager, engine, bridge):
        """Test a failed HEIC conversion skips decoding."""
        bridge.fail = True

        result = await manager.scan_image(HEIC_HEADER + b"\x00" * 32, "IMG_0001.HEIC")

        assert result is None
        assert bridge.calls == ["heic"]
        assert engine.calls == 0
        assert manager.scan_error_code == exceptions.TRANSCODE_FAILED

    @pytest.mark.asyncio
    async def test_scan_image_ignored_while_camera_active(self, manager, scans):
        """Test uploads are disabled during a camera session."""
        await manager.start()

        result = await manager.scan_image(encode_image(blank_frame()), "photo.png")

        assert result is None
        assert scans == []

    @pytest.mark.asyncio
    async def test_scan_image_ignored_while_loading(self, manager, engine):
        """Test is_loading disables uploads."""
        manager.is_loading = True

        assert await manager.scan_image(encode_image(blank_frame())) is None
        assert engine.calls == 0

    @pytest.mark.asyncio
    async def test_submit_manual(self, manager, scans):
        """Test typed codes are trimmed and blank input ignored."""
        assert manager.submit_manual("   ") is None
        assert manager.submit_manual(f"  {EAN13} \n") == EAN13
        assert scans == [EAN13]

        await manager.start()
        assert manager.submit_manual(EAN13) is None
        assert scans == [EAN13]
