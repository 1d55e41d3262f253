"""Factories for runtime service selection."""

from __future__ import annotations

from typing import Optional

from ..config import Settings, get_settings
from .transcription.base import TranscriptionService
from .transcription.dummy import DummyTranscriptionService
from .transcription.http_client import HttpTranscriptionService
from .transcription.openai_client import OpenAITranscriptionService

TRANSCRIPTION_BACKENDS = ("dummy", "http", "openai")


class ServiceConfigurationError(ValueError):
    """Raised when an unknown backend is requested."""


def _normalise(name: Optional[str]) -> str:
    if not name:
        return "none"
    return name.strip().lower()


def resolve_transcription_backend(
    name: Optional[str],
    settings: Optional[Settings] = None,
    service_url: Optional[str] = None,
) -> Optional[TranscriptionService]:
    settings = settings or get_settings()
    backend = _normalise(name)
    if backend in {"", "none", "off"}:
        return None
    if backend == "dummy":
        return DummyTranscriptionService()
    if backend == "http":
        return HttpTranscriptionService(
            base_url=service_url or settings.service_url,
            api_key=settings.service_api_key,
        )
    if backend == "openai":
        return OpenAITranscriptionService()
    raise ServiceConfigurationError(f"Unknown transcription backend: {name}")


__all__ = [
    "ServiceConfigurationError",
    "TRANSCRIPTION_BACKENDS",
    "resolve_transcription_backend",
]
