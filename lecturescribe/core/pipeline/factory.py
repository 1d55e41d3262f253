"""Factory helpers wiring a session controller from settings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ...config import SessionPolicy, Settings, get_settings
from ...logging import get_logger
from ...services.factory import ServiceConfigurationError, resolve_transcription_backend
from ...services.transcription.base import TranscriptionService
from ..audio.base import CaptureConstraints, CaptureDevice
from .controller import SessionController
from .dispatcher import TranscriptionDispatcher
from .scheduler import Scheduler

LOGGER = get_logger(__name__)


class SessionConfigurationError(RuntimeError):
    """Raised when a session cannot be assembled from the given options."""


@dataclass
class SessionRequest:
    """User-facing options for one recording session; ``None`` means use settings."""

    backend: Optional[str] = None
    service_url: Optional[str] = None
    context_id: Optional[str] = None
    device: Optional[str] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None


def constraints_from_settings(settings: Settings, request: Optional[SessionRequest] = None) -> CaptureConstraints:
    request = request or SessionRequest()
    return CaptureConstraints(
        echo_cancellation=settings.echo_cancellation,
        noise_suppression=settings.noise_suppression,
        auto_gain_control=settings.auto_gain_control,
        sample_rate=request.sample_rate or settings.sample_rate,
        channel_count=request.channels or settings.channels,
        device=request.device if request.device is not None else settings.input_device,
    )


def _default_device() -> CaptureDevice:
    try:
        from ..audio.sounddevice_backend import SoundDeviceInput
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise SessionConfigurationError("sounddevice dependency is required for audio capture") from exc
    return SoundDeviceInput()


def create_controller(
    request: SessionRequest,
    scheduler: Scheduler,
    *,
    settings: Optional[Settings] = None,
    device: Optional[CaptureDevice] = None,
    service: Optional[TranscriptionService] = None,
) -> SessionController:
    settings = settings or get_settings()
    constraints = constraints_from_settings(settings, request)

    if service is None:
        backend = request.backend or settings.transcription_backend
        try:
            service = resolve_transcription_backend(backend, settings=settings, service_url=request.service_url)
        except ServiceConfigurationError as exc:
            raise SessionConfigurationError(str(exc)) from exc
        if service is None:
            raise SessionConfigurationError("A transcription backend is required for live sessions")

    dispatcher = TranscriptionDispatcher(
        service,
        timeout=settings.dispatch_timeout_seconds,
        sample_rate=constraints.sample_rate,
        channels=constraints.channel_count,
        payload_format=settings.payload_format,
    )
    LOGGER.debug("Session wired with %s and %s", type(service).__name__, constraints)
    return SessionController(
        device or _default_device(),
        dispatcher,
        scheduler,
        policy=SessionPolicy.from_settings(settings),
        constraints=constraints,
        context_id=request.context_id if request.context_id is not None else settings.context_id,
    )


__all__ = [
    "SessionConfigurationError",
    "SessionRequest",
    "constraints_from_settings",
    "create_controller",
]
