"""Circuit breaker and staleness watchdog for transcription dispatch."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from ...logging import get_logger

LOGGER = get_logger(__name__)


class TripReason(str, enum.Enum):
    CONSECUTIVE_FAILURES = "consecutive_failures"
    STALE = "stale"


TRIP_MESSAGES = {
    TripReason.CONSECUTIVE_FAILURES: (
        "Transcription failed too many times in a row. Please start a new recording."
    ),
    TripReason.STALE: (
        "Timed out waiting for a successful transcription. Please start a new recording."
    ),
}


class GovernorTripped(RuntimeError):
    """Terminal failure of a session's transcription pipeline."""

    def __init__(self, reason: TripReason, detail: str = "") -> None:
        super().__init__(TRIP_MESSAGES[reason])
        self.reason = reason
        self.detail = detail

    @property
    def user_message(self) -> str:
        return TRIP_MESSAGES[self.reason]


@dataclass
class FailureCounter:
    consecutive_failures: int = 0
    last_success: float = 0.0
    total_failures: int = 0
    total_successes: int = 0


class FailureGovernor:
    """Decides whether dispatch may proceed.

    ``armed`` until either ``failure_threshold`` consecutive failures or more
    than ``staleness_seconds`` without a success; then ``tripped`` for good.
    A new session builds a new governor.
    """

    ARMED = "armed"
    TRIPPED = "tripped"

    def __init__(self, now: float, failure_threshold: int = 3, staleness_seconds: float = 60.0) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if staleness_seconds <= 0:
            raise ValueError("staleness_seconds must be positive")
        self.failure_threshold = failure_threshold
        self.staleness_seconds = staleness_seconds
        self.counter = FailureCounter(last_success=now)
        self.state = self.ARMED
        self.trip: Optional[GovernorTripped] = None
        self._suspended_at: Optional[float] = None

    @property
    def tripped(self) -> bool:
        return self.state == self.TRIPPED

    @property
    def trip_reason(self) -> Optional[TripReason]:
        return self.trip.reason if self.trip is not None else None

    @property
    def consecutive_failures(self) -> int:
        return self.counter.consecutive_failures

    def since_last_success(self, now: float) -> float:
        reference = self._suspended_at if self._suspended_at is not None else now
        return reference - self.counter.last_success

    def permit(self, now: float) -> bool:
        """Evaluate before a dispatch attempt; ``False`` once tripped."""

        if self.tripped:
            return False
        self._check_staleness(now)
        return not self.tripped

    def record_success(self, now: float) -> None:
        if self.tripped:
            return
        self._check_staleness(now)
        if self.tripped:
            return
        self.counter.consecutive_failures = 0
        self.counter.last_success = now
        self.counter.total_successes += 1
        if self._suspended_at is not None:
            # Paused time is only excluded from here on.
            self._suspended_at = now

    def record_failure(self, now: float, error: Optional[BaseException] = None) -> None:
        if self.tripped:
            return
        self.counter.consecutive_failures += 1
        self.counter.total_failures += 1
        LOGGER.warning(
            "Transcription failure %s/%s: %s",
            self.counter.consecutive_failures,
            self.failure_threshold,
            error,
        )
        if self.counter.consecutive_failures >= self.failure_threshold:
            self._trip(
                TripReason.CONSECUTIVE_FAILURES,
                f"{self.counter.consecutive_failures} consecutive failures",
            )
            return
        self._check_staleness(now)

    def record_idle(self, now: float) -> None:
        """Note a flush skipped for lack of audio.

        With no failure outstanding the pipeline is healthy and simply has
        nothing to send, so the staleness clock restarts.
        """

        if not self.tripped and self.counter.consecutive_failures == 0 and self._suspended_at is None:
            self.counter.last_success = now

    def suspend(self, now: float) -> None:
        if self._suspended_at is None:
            self._suspended_at = now

    def resume(self, now: float) -> None:
        if self._suspended_at is None:
            return
        self.counter.last_success += now - self._suspended_at
        self._suspended_at = None

    def _check_staleness(self, now: float) -> None:
        elapsed = self.since_last_success(now)
        if elapsed > self.staleness_seconds:
            self._trip(TripReason.STALE, f"{elapsed:.1f}s since last successful transcription")

    def _trip(self, reason: TripReason, detail: str) -> None:
        self.state = self.TRIPPED
        self.trip = GovernorTripped(reason, detail)
        LOGGER.error("Failure governor tripped (%s): %s", reason.value, detail)


__all__ = [
    "FailureCounter",
    "FailureGovernor",
    "GovernorTripped",
    "TRIP_MESSAGES",
    "TripReason",
]
