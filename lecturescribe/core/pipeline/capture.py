"""Microphone ownership and time-boxed chunk emission."""

from __future__ import annotations

from typing import Callable, Optional

from ...data.models import AudioChunk
from ...logging import get_logger
from ..audio.base import CaptureConstraints, CaptureDevice, CaptureError, DeviceHandle
from .scheduler import Scheduler, TimerHandle

LOGGER = get_logger(__name__)

ChunkSink = Callable[[AudioChunk], None]
FailureSink = Callable[[CaptureError], None]


class CaptureSession:
    """Owns one device handle and slices its stream into :class:`AudioChunk` objects.

    Raw device data is marshalled onto the scheduler and gathered into a
    pending segment; every ``chunk_seconds`` the segment is emitted to
    ``sink`` unless it is empty.
    """

    IDLE = "idle"
    CAPTURING = "capturing"
    PAUSED = "paused"

    def __init__(
        self,
        device: CaptureDevice,
        scheduler: Scheduler,
        sink: ChunkSink,
        on_failure: FailureSink,
        chunk_seconds: float = 5.0,
    ) -> None:
        if chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be positive")
        self._device = device
        self._scheduler = scheduler
        self._sink = sink
        self._on_failure = on_failure
        self.chunk_seconds = chunk_seconds
        self.state = self.IDLE
        self._handle: Optional[DeviceHandle] = None
        self._timer: Optional[TimerHandle] = None
        self._pending = bytearray()
        self._pending_since: Optional[float] = None
        self._generation = 0
        self.chunks_emitted = 0
        self.empty_slices = 0

    @property
    def is_active(self) -> bool:
        return self.state != self.IDLE

    @property
    def handle(self) -> Optional[DeviceHandle]:
        return self._handle

    def start(self, constraints: CaptureConstraints) -> None:
        if self.state != self.IDLE:
            raise RuntimeError("Capture session already started")
        self._generation += 1
        generation = self._generation
        try:
            handle = self._device.acquire(constraints)
        except CaptureError:
            raise
        except Exception as exc:
            raise CaptureError(f"Failed to acquire audio input: {exc}") from exc

        handle.on_data(lambda data: self._scheduler.call_soon(lambda: self._receive(generation, data)))
        handle.on_error(lambda exc: self._scheduler.call_soon(lambda: self._fail(generation, exc)))
        self._handle = handle
        self._reset_pending()
        self.state = self.CAPTURING
        self._arm()
        LOGGER.info("Capture started; emitting chunks every %.1fs", self.chunk_seconds)

    def pause(self) -> None:
        if self.state != self.CAPTURING:
            return
        self.cut()
        self._disarm()
        self.state = self.PAUSED
        LOGGER.debug("Capture paused")

    def resume(self) -> None:
        if self.state != self.PAUSED:
            return
        self.state = self.CAPTURING
        self._arm()
        LOGGER.debug("Capture resumed")

    def cut(self) -> None:
        """Emit whatever audio is pending right now."""

        if not self._pending:
            if self.state == self.CAPTURING:
                self.empty_slices += 1
            self._reset_pending()
            return
        chunk = AudioChunk(
            data=bytes(self._pending),
            captured_at=self._pending_since if self._pending_since is not None else self._scheduler.now(),
        )
        self._reset_pending()
        self.chunks_emitted += 1
        self._sink(chunk)

    def stop(self) -> None:
        if self.state == self.IDLE:
            return
        self._generation += 1
        self._disarm()
        self._reset_pending()
        self.state = self.IDLE
        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                handle.release()
            except Exception:
                LOGGER.exception("Failed to release audio input")
        LOGGER.info("Capture stopped after %s chunk(s)", self.chunks_emitted)

    def _arm(self) -> None:
        self._disarm()
        self._timer = self._scheduler.call_every(self.chunk_seconds, self.cut)

    def _disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _reset_pending(self) -> None:
        self._pending = bytearray()
        self._pending_since = None

    def _receive(self, generation: int, data: bytes) -> None:
        if generation != self._generation or self.state != self.CAPTURING or not data:
            return
        if self._pending_since is None:
            self._pending_since = self._scheduler.now()
        self._pending.extend(data)

    def _fail(self, generation: int, exc: Exception) -> None:
        if generation != self._generation or self.state == self.IDLE:
            return
        LOGGER.error("Audio input failed: %s", exc)
        self.stop()
        error = exc if isinstance(exc, CaptureError) else CaptureError(str(exc))
        self._on_failure(error)


__all__ = ["CaptureSession"]
