"""Accumulation of captured audio between flushes."""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, List

from ...data.models import AudioChunk


class ChunkBuffer:
    """Ordered chunks of the current, not yet dispatched window.

    ``drain_all`` swaps the window out under the lock, so a chunk appended
    concurrently lands either in the drained window or in the next one,
    never in both and never lost.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._chunks: Deque[AudioChunk] = deque()
        self._size = 0
        self._total_appended = 0

    def append(self, chunk: AudioChunk) -> None:
        with self._lock:
            self._chunks.append(chunk)
            self._size += chunk.size
            self._total_appended += 1

    def drain_all(self) -> List[AudioChunk]:
        with self._lock:
            drained, self._chunks = self._chunks, deque()
            self._size = 0
        return list(drained)

    def size_bytes(self) -> int:
        with self._lock:
            return self._size

    @property
    def total_appended(self) -> int:
        return self._total_appended

    def __len__(self) -> int:
        with self._lock:
            return len(self._chunks)

    def __bool__(self) -> bool:
        return len(self) > 0


__all__ = ["ChunkBuffer"]
