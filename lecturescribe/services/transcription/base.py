"""Transcription service abstractions."""

from __future__ import annotations

import abc

from ...data.models import TranscriptionResult, TranscriptionUnit


class DispatchError(RuntimeError):
    """A recoverable failure of one transcription request."""

    kind = "error"


class DispatchTimeout(DispatchError):
    kind = "timeout"


class NetworkError(DispatchError):
    kind = "network"


class ServiceRejected(DispatchError):
    kind = "rejected"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponse(DispatchError):
    kind = "malformed"


class TranscriptionService(abc.ABC):
    """Turn one packaged audio unit into text.

    Implementations translate their transport failures into
    :class:`DispatchError` subclasses and must not block longer than
    ``timeout`` seconds.
    """

    @abc.abstractmethod
    def transcribe(self, unit: TranscriptionUnit, timeout: float) -> TranscriptionResult:
        raise NotImplementedError

    def close(self) -> None:
        """Release network resources held by the service."""


__all__ = [
    "DispatchError",
    "DispatchTimeout",
    "MalformedResponse",
    "NetworkError",
    "ServiceRejected",
    "TranscriptionService",
]
