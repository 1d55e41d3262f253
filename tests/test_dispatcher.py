import io
import threading
import wave

import pytest

from lecturescribe.core.pipeline.dispatcher import DispatchInFlightError, TranscriptionDispatcher
from lecturescribe.data.models import AudioChunk, TranscriptionResult, TranscriptionUnit
from lecturescribe.services.transcription.base import (
    DispatchTimeout,
    MalformedResponse,
    NetworkError,
    ServiceRejected,
    TranscriptionService,
)


class RecordingService(TranscriptionService):
    def __init__(self, text: str = "transcribed") -> None:
        self.text = text
        self.units: list[TranscriptionUnit] = []
        self.timeouts: list[float] = []

    def transcribe(self, unit: TranscriptionUnit, timeout: float) -> TranscriptionResult:
        self.units.append(unit)
        self.timeouts.append(timeout)
        return TranscriptionResult(text=self.text)


class RaisingService(TranscriptionService):
    def __init__(self, error: Exception) -> None:
        self.error = error

    def transcribe(self, unit: TranscriptionUnit, timeout: float) -> TranscriptionResult:
        raise self.error


class BlockingService(TranscriptionService):
    def __init__(self) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()

    def transcribe(self, unit: TranscriptionUnit, timeout: float) -> TranscriptionResult:
        self.entered.set()
        self.release.wait(2.0)
        return TranscriptionResult(text="late")


class FakeClock:
    def __init__(self, step: float = 0.0) -> None:
        self.value = 0.0
        self.step = step

    def __call__(self) -> float:
        current = self.value
        self.value += self.step
        return current


def _chunks(*payloads: bytes) -> list[AudioChunk]:
    return [AudioChunk(data=payload, captured_at=float(index)) for index, payload in enumerate(payloads)]


def test_build_unit_wraps_pcm_in_wav() -> None:
    dispatcher = TranscriptionDispatcher(RecordingService(), sample_rate=16000, channels=1)

    unit = dispatcher.build_unit(_chunks(b"\x01\x00" * 10, b"\x02\x00" * 5), context_id="cs101", created_at=3.0)

    with wave.open(io.BytesIO(unit.payload), "rb") as wf:
        pcm = wf.readframes(wf.getnframes())
        sample_rate, channels = wf.getframerate(), wf.getnchannels()
    assert pcm == b"\x01\x00" * 10 + b"\x02\x00" * 5
    assert (sample_rate, channels) == (16000, 1)
    assert unit.content_type == "audio/wav"
    assert unit.chunk_count == 2
    assert unit.context_id == "cs101"
    assert unit.created_at == 3.0


def test_build_unit_raw_payload_declares_format() -> None:
    dispatcher = TranscriptionDispatcher(RecordingService(), sample_rate=44100, channels=2, payload_format="raw")

    unit = dispatcher.build_unit(_chunks(b"abcd"))

    assert unit.payload == b"abcd"
    assert unit.content_type == "audio/L16; rate=44100; channels=2"
    assert unit.context_id is None


def test_build_unit_requires_audio() -> None:
    dispatcher = TranscriptionDispatcher(RecordingService())

    with pytest.raises(ValueError):
        dispatcher.build_unit([])


def test_dispatch_passes_timeout_to_service() -> None:
    service = RecordingService("hello")
    dispatcher = TranscriptionDispatcher(service, timeout=7.5)
    unit = dispatcher.build_unit(_chunks(b"\x00\x00" * 4))

    result = dispatcher.dispatch(unit)

    assert result.text == "hello"
    assert service.units == [unit]
    assert service.timeouts == [7.5]
    assert not dispatcher.in_flight


@pytest.mark.parametrize(
    "error",
    [DispatchTimeout("slow"), NetworkError("down"), ServiceRejected("no", 500), MalformedResponse("junk")],
)
def test_dispatch_errors_propagate_unchanged(error) -> None:
    dispatcher = TranscriptionDispatcher(RaisingService(error))
    unit = dispatcher.build_unit(_chunks(b"\x00\x00"))

    with pytest.raises(type(error)):
        dispatcher.dispatch(unit)
    assert not dispatcher.in_flight


def test_unexpected_errors_become_service_rejected() -> None:
    dispatcher = TranscriptionDispatcher(RaisingService(KeyError("text")))
    unit = dispatcher.build_unit(_chunks(b"\x00\x00"))

    with pytest.raises(ServiceRejected):
        dispatcher.dispatch(unit)


def test_slow_response_counts_as_timeout() -> None:
    dispatcher = TranscriptionDispatcher(RecordingService(), timeout=5.0, clock=FakeClock(step=6.0))
    unit = dispatcher.build_unit(_chunks(b"\x00\x00"), created_at=0.0)

    with pytest.raises(DispatchTimeout):
        dispatcher.dispatch(unit)


def test_second_dispatch_while_in_flight_is_refused() -> None:
    service = BlockingService()
    dispatcher = TranscriptionDispatcher(service)
    unit = dispatcher.build_unit(_chunks(b"\x00\x00"))

    worker = threading.Thread(target=dispatcher.dispatch, args=(unit,))
    worker.start()
    assert service.entered.wait(2.0)
    try:
        assert dispatcher.in_flight
        with pytest.raises(DispatchInFlightError):
            dispatcher.dispatch(unit)
    finally:
        service.release.set()
        worker.join()
    assert not dispatcher.in_flight


def test_invalid_configuration_is_rejected() -> None:
    with pytest.raises(ValueError):
        TranscriptionDispatcher(RecordingService(), timeout=0)
    with pytest.raises(ValueError):
        TranscriptionDispatcher(RecordingService(), payload_format="mp3")
