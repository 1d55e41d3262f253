"""Audio processing utilities."""

from __future__ import annotations

import io
import wave

import numpy as np

SAMPLE_WIDTH = 2  # 16-bit PCM


def float_to_pcm16(data: np.ndarray) -> bytes:
    """Convert float samples in ``[-1, 1]`` to interleaved little-endian int16 bytes."""

    clipped = np.clip(np.asarray(data, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def encode_wav(pcm: bytes, sample_rate: int, channels: int) -> bytes:
    """Wrap raw int16 PCM in an in-memory WAV container.

    Trailing bytes that do not form a whole frame are dropped so the header
    always matches the payload.
    """

    frame_size = SAMPLE_WIDTH * channels
    usable = len(pcm) - (len(pcm) % frame_size)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(SAMPLE_WIDTH)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm[:usable])
    return buffer.getvalue()


def pcm_duration_seconds(size_bytes: int, sample_rate: int, channels: int) -> float:
    if sample_rate <= 0 or channels <= 0:
        return 0.0
    return size_bytes / float(SAMPLE_WIDTH * channels * sample_rate)


__all__ = [
    "SAMPLE_WIDTH",
    "encode_wav",
    "float_to_pcm16",
    "pcm_duration_seconds",
]
