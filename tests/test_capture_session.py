from typing import Optional

import pytest

from lecturescribe.core.audio.base import CaptureConstraints, CaptureDevice, CaptureError, DeviceHandle
from lecturescribe.core.pipeline.capture import CaptureSession
from lecturescribe.core.pipeline.scheduler import ManualScheduler


class FakeHandle(DeviceHandle):
    def __init__(self) -> None:
        self.data_callback = None
        self.error_callback = None
        self.released = False

    def on_data(self, callback) -> None:
        self.data_callback = callback

    def on_error(self, callback) -> None:
        self.error_callback = callback

    def release(self) -> None:
        self.released = True

    def emit(self, data: bytes) -> None:
        self.data_callback(data)


class FakeDevice(CaptureDevice):
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.handles: list[FakeHandle] = []
        self.constraints: list[CaptureConstraints] = []

    def acquire(self, constraints: CaptureConstraints) -> DeviceHandle:
        self.constraints.append(constraints)
        if self.error is not None:
            raise self.error
        handle = FakeHandle()
        self.handles.append(handle)
        return handle


def _session(device: FakeDevice, scheduler: ManualScheduler, chunk_seconds: float = 5.0):
    chunks = []
    failures = []
    session = CaptureSession(
        device,
        scheduler,
        sink=chunks.append,
        on_failure=failures.append,
        chunk_seconds=chunk_seconds,
    )
    return session, chunks, failures


def test_emits_one_chunk_per_interval_in_order() -> None:
    scheduler = ManualScheduler()
    device = FakeDevice()
    session, chunks, _ = _session(device, scheduler)
    session.start(CaptureConstraints())
    handle = device.handles[0]

    handle.emit(b"a1")
    handle.emit(b"a2")
    scheduler.advance(5.0)
    handle.emit(b"b1")
    scheduler.advance(5.0)

    assert [chunk.data for chunk in chunks] == [b"a1a2", b"b1"]
    assert session.chunks_emitted == 2


def test_empty_slices_are_not_emitted() -> None:
    scheduler = ManualScheduler()
    device = FakeDevice()
    session, chunks, _ = _session(device, scheduler)
    session.start(CaptureConstraints())

    scheduler.advance(15.0)

    assert chunks == []
    assert session.empty_slices == 3


def test_constraints_are_forwarded_to_device() -> None:
    scheduler = ManualScheduler()
    device = FakeDevice()
    session, _, _ = _session(device, scheduler)
    constraints = CaptureConstraints(echo_cancellation=False, sample_rate=48000, channel_count=2)

    session.start(constraints)

    assert device.constraints == [constraints]


def test_pause_cuts_pending_audio_and_ignores_data_until_resume() -> None:
    scheduler = ManualScheduler()
    device = FakeDevice()
    session, chunks, _ = _session(device, scheduler)
    session.start(CaptureConstraints())
    handle = device.handles[0]

    handle.emit(b"before")
    scheduler.run_pending()
    session.pause()
    handle.emit(b"ignored")
    scheduler.advance(10.0)

    assert [chunk.data for chunk in chunks] == [b"before"]
    assert session.state == CaptureSession.PAUSED

    session.resume()
    handle.emit(b"after")
    scheduler.advance(5.0)

    assert [chunk.data for chunk in chunks] == [b"before", b"after"]


def test_stop_releases_device_and_drops_late_data() -> None:
    scheduler = ManualScheduler()
    device = FakeDevice()
    session, chunks, _ = _session(device, scheduler)
    session.start(CaptureConstraints())
    handle = device.handles[0]

    handle.emit(b"pending")
    session.stop()
    scheduler.advance(10.0)

    assert handle.released
    assert chunks == []
    assert not session.is_active


def test_acquire_failure_raises_capture_error() -> None:
    scheduler = ManualScheduler()
    session, _, _ = _session(FakeDevice(error=OSError("no mic")), scheduler)

    with pytest.raises(CaptureError):
        session.start(CaptureConstraints())
    assert session.state == CaptureSession.IDLE


def test_runtime_device_error_stops_session_and_reports() -> None:
    scheduler = ManualScheduler()
    device = FakeDevice()
    session, _, failures = _session(device, scheduler)
    session.start(CaptureConstraints())
    handle = device.handles[0]

    handle.error_callback(RuntimeError("unplugged"))
    scheduler.run_pending()

    assert len(failures) == 1
    assert isinstance(failures[0], CaptureError)
    assert handle.released
    assert session.state == CaptureSession.IDLE


def test_start_twice_is_rejected() -> None:
    scheduler = ManualScheduler()
    session, _, _ = _session(FakeDevice(), scheduler)
    session.start(CaptureConstraints())

    with pytest.raises(RuntimeError):
        session.start(CaptureConstraints())
