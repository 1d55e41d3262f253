"""Dummy transcription service for testing or offline usage."""

from __future__ import annotations

from ...data.models import TranscriptionResult, TranscriptionUnit
from .base import TranscriptionService


class DummyTranscriptionService(TranscriptionService):
    def __init__(self) -> None:
        self.calls = 0

    def transcribe(self, unit: TranscriptionUnit, timeout: float) -> TranscriptionResult:
        self.calls += 1
        text = (
            f"Dummy transcript segment {self.calls} covering {unit.chunk_count} chunk(s) "
            f"and {unit.size} bytes of {unit.content_type}."
        )
        return TranscriptionResult(text=text, raw_response={"context_id": unit.context_id})


__all__ = ["DummyTranscriptionService"]
