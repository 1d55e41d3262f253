"""Data models used by LectureScribe."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, Field


class SessionState(str, enum.Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    PROCESSING = "processing"


@dataclass(frozen=True)
class AudioChunk:
    """One emission interval worth of captured audio."""

    data: bytes
    captured_at: float

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class TranscriptionUnit:
    """Payload shipped to the transcription service for a single flush."""

    payload: bytes
    content_type: str
    chunk_count: int
    created_at: float
    context_id: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.payload)


class TranscriptionResult(BaseModel):
    text: str
    title: Optional[str] = None
    key_topics: List[str] = Field(default_factory=list)
    raw_response: Optional[dict] = None


class SessionSnapshot(BaseModel):
    """Observable session state handed to the presentation layer."""

    session_id: Optional[str] = None
    state: SessionState = SessionState.IDLE
    transcript: str = ""
    title: str = ""
    suggested_title: str = ""
    key_topics: List[str] = Field(default_factory=list)
    elapsed_seconds: int = 0
    last_error: Optional[str] = None
    dispatch_count: int = 0
    failure_count: int = 0
    finishing: bool = False


__all__ = [
    "AudioChunk",
    "SessionSnapshot",
    "SessionState",
    "TranscriptionResult",
    "TranscriptionUnit",
]
