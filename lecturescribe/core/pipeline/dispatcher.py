"""Packaging of buffered audio and the single outbound transcription call."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional, Sequence

from ...data.models import AudioChunk, TranscriptionResult, TranscriptionUnit
from ...logging import get_logger
from ...services.transcription.base import (
    DispatchError,
    DispatchTimeout,
    MalformedResponse,
    ServiceRejected,
    TranscriptionService,
)
from ...utils.audio import encode_wav, pcm_duration_seconds

LOGGER = get_logger(__name__)


class DispatchInFlightError(RuntimeError):
    """Raised when a second dispatch is attempted while one is outstanding."""


class TranscriptionDispatcher:
    """Turns drained chunks into one :class:`TranscriptionUnit` and ships it.

    Only one :meth:`dispatch` may run at a time; a re-entrant call raises
    :class:`DispatchInFlightError` instead of issuing a second request.
    """

    def __init__(
        self,
        service: TranscriptionService,
        *,
        timeout: float = 20.0,
        sample_rate: int = 16_000,
        channels: int = 1,
        payload_format: str = "wav",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if payload_format not in {"wav", "raw"}:
            raise ValueError(f"Unsupported payload format: {payload_format}")
        self.service = service
        self.timeout = timeout
        self.sample_rate = sample_rate
        self.channels = channels
        self.payload_format = payload_format
        self._clock = clock
        self._guard = threading.Lock()

    @property
    def content_type(self) -> str:
        if self.payload_format == "wav":
            return "audio/wav"
        return f"audio/L16; rate={self.sample_rate}; channels={self.channels}"

    @property
    def in_flight(self) -> bool:
        return self._guard.locked()

    def build_unit(
        self,
        chunks: Sequence[AudioChunk],
        context_id: Optional[str] = None,
        created_at: Optional[float] = None,
    ) -> TranscriptionUnit:
        if not chunks:
            raise ValueError("Cannot build a transcription unit without audio")
        pcm = b"".join(chunk.data for chunk in chunks)
        payload = encode_wav(pcm, self.sample_rate, self.channels) if self.payload_format == "wav" else pcm
        return TranscriptionUnit(
            payload=payload,
            content_type=self.content_type,
            chunk_count=len(chunks),
            created_at=self._clock() if created_at is None else created_at,
            context_id=context_id or None,
        )

    def dispatch(self, unit: TranscriptionUnit) -> TranscriptionResult:
        if not self._guard.acquire(blocking=False):
            raise DispatchInFlightError("A transcription request is already in flight")
        try:
            return self._call(unit)
        finally:
            self._guard.release()

    def _call(self, unit: TranscriptionUnit) -> TranscriptionResult:
        LOGGER.info(
            "Dispatching %s chunk(s), %s bytes (~%.1fs of audio)",
            unit.chunk_count,
            unit.size,
            pcm_duration_seconds(unit.size, self.sample_rate, self.channels),
        )
        started = self._clock()
        try:
            result = self.service.transcribe(unit, timeout=self.timeout)
        except DispatchError:
            raise
        except Exception as exc:
            LOGGER.exception("Transcription service raised an unexpected error")
            raise ServiceRejected(f"Transcription service error: {exc}") from exc

        elapsed = self._clock() - started
        if elapsed > self.timeout:
            raise DispatchTimeout(
                f"Transcription took {elapsed:.1f}s, exceeding the {self.timeout:.0f}s limit"
            )
        if not isinstance(result, TranscriptionResult):
            raise MalformedResponse(f"Unexpected transcription result type: {type(result).__name__}")
        LOGGER.debug("Transcription returned %s characters in %.2fs", len(result.text), elapsed)
        return result


__all__ = ["DispatchInFlightError", "TranscriptionDispatcher"]
