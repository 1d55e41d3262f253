"""Transcription services."""

from .base import (
    DispatchError,
    DispatchTimeout,
    MalformedResponse,
    NetworkError,
    ServiceRejected,
    TranscriptionService,
)
from .dummy import DummyTranscriptionService

__all__ = [
    "DispatchError",
    "DispatchTimeout",
    "DummyTranscriptionService",
    "MalformedResponse",
    "NetworkError",
    "ServiceRejected",
    "TranscriptionService",
]
