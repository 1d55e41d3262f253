"""Running transcript and title derivation."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from ...data.models import TranscriptionResult
from ...logging import get_logger

LOGGER = get_logger(__name__)

FALLBACK_TITLE_PREFIX = "Lecture notes"


def format_time_of_day(moment: datetime) -> str:
    return moment.strftime("%H:%M")


class TranscriptAssembler:
    """Append-only transcript for one session.

    The title is derived once, from the first absorbed text whose trimmed
    length exceeds ``trigger_length``; later texts never change it.
    """

    def __init__(
        self,
        trigger_length: int = 15,
        title_words: int = 6,
        max_title_length: int = 30,
        wall_clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.trigger_length = trigger_length
        self.title_words = title_words
        self.max_title_length = max_title_length
        self._wall_clock = wall_clock
        self._parts: List[str] = []
        self.title: str = ""
        self.suggested_title: str = ""
        self.key_topics: List[str] = []

    @property
    def text(self) -> str:
        return " ".join(self._parts)

    @property
    def segment_count(self) -> int:
        return len(self._parts)

    def absorb(self, text: str) -> bool:
        """Append ``text``; returns ``False`` when it was blank and ignored."""

        cleaned = (text or "").strip()
        if not cleaned:
            return False
        self._parts.append(cleaned)
        if not self.title and len(cleaned) > self.trigger_length:
            self.title = self.derive_title(cleaned)
            LOGGER.info("Derived session title: %s", self.title)
        return True

    def absorb_result(self, result: TranscriptionResult) -> bool:
        absorbed = self.absorb(result.text)
        if result.title and not self.suggested_title:
            self.suggested_title = result.title.strip()
        for topic in result.key_topics:
            topic = topic.strip()
            if topic and topic not in self.key_topics:
                self.key_topics.append(topic)
        return absorbed

    def derive_title(self, text: str) -> str:
        preview = " ".join(text.split()[: self.title_words])
        if len(preview) > self.max_title_length:
            preview = f"{preview[: self.max_title_length]}..."
        return f"{preview} ({format_time_of_day(self._wall_clock())})"

    def fallback_title(self) -> str:
        return f"{FALLBACK_TITLE_PREFIX} {format_time_of_day(self._wall_clock())}"

    def ensure_title(self) -> str:
        if not self.title:
            self.title = self.fallback_title()
        return self.title


__all__ = ["FALLBACK_TITLE_PREFIX", "TranscriptAssembler", "format_time_of_day"]
