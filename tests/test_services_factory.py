import pytest

from lecturescribe import config
from lecturescribe.core.audio.base import CaptureConstraints, CaptureDevice, DeviceHandle
from lecturescribe.core.pipeline.factory import (
    SessionConfigurationError,
    SessionRequest,
    constraints_from_settings,
    create_controller,
)
from lecturescribe.core.pipeline.scheduler import ManualScheduler
from lecturescribe.services.factory import ServiceConfigurationError, resolve_transcription_backend
from lecturescribe.services.transcription.dummy import DummyTranscriptionService
from lecturescribe.services.transcription.http_client import HttpTranscriptionService


class NullDevice(CaptureDevice):
    def acquire(self, constraints: CaptureConstraints) -> DeviceHandle:  # pragma: no cover - not exercised
        raise AssertionError("not used")


@pytest.fixture()
def settings(monkeypatch):
    monkeypatch.setattr(config, "_settings", None)
    return config.Settings(
        sample_rate=44100,
        input_device="3",
        noise_suppression=False,
        service_url="http://lectures.local:3001",
        payload_format="raw",
        context_id="default-course",
    )


def test_resolve_known_backends(settings):
    assert resolve_transcription_backend("none", settings) is None
    assert resolve_transcription_backend("", settings) is None
    assert isinstance(resolve_transcription_backend("Dummy", settings), DummyTranscriptionService)

    http = resolve_transcription_backend("http", settings)
    assert isinstance(http, HttpTranscriptionService)
    assert http.base_url == "http://lectures.local:3001"

    override = resolve_transcription_backend("http", settings, service_url="http://other:9000/")
    assert override.base_url == "http://other:9000"


def test_unknown_backend_is_rejected(settings):
    with pytest.raises(ServiceConfigurationError):
        resolve_transcription_backend("whisper.cpp", settings)


def test_constraints_prefer_request_over_settings(settings):
    constraints = constraints_from_settings(settings, SessionRequest(channels=2, device="USB Mic"))

    assert constraints.sample_rate == 44100
    assert constraints.channel_count == 2
    assert constraints.device == "USB Mic"
    assert constraints.noise_suppression is False
    assert constraints_from_settings(settings).device == "3"


def test_create_controller_wires_policy_and_dispatcher(settings):
    controller = create_controller(
        SessionRequest(backend="dummy"),
        ManualScheduler(),
        settings=settings,
        device=NullDevice(),
    )

    assert isinstance(controller.dispatcher.service, DummyTranscriptionService)
    assert controller.dispatcher.payload_format == "raw"
    assert controller.dispatcher.sample_rate == 44100
    assert controller.default_context_id == "default-course"
    assert controller.policy.flush_interval_seconds == settings.flush_interval_seconds


def test_create_controller_requires_a_backend(settings):
    with pytest.raises(SessionConfigurationError):
        create_controller(SessionRequest(backend="off"), ManualScheduler(), settings=settings, device=NullDevice())
    with pytest.raises(SessionConfigurationError):
        create_controller(SessionRequest(backend="bogus"), ManualScheduler(), settings=settings, device=NullDevice())
