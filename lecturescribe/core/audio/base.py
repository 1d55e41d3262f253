"""Audio capture abstractions."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Callable, Optional

DataCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class CaptureConstraints:
    """Input configuration handed through to the capture device.

    The processing flags are requests; backends that cannot honour them
    capture without them.
    """

    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    sample_rate: int = 16_000
    channel_count: int = 1
    device: Optional[str] = None


class DeviceHandle(abc.ABC):
    """An acquired input device streaming raw audio bytes.

    ``sample_rate`` and ``channels`` describe the stream actually opened,
    which may differ from the requested constraints.
    """

    sample_rate: Optional[int] = None
    channels: Optional[int] = None

    @abc.abstractmethod
    def on_data(self, callback: DataCallback) -> None:
        """Register the callback receiving captured bytes.

        Backends may invoke it from their own audio thread.
        """

    @abc.abstractmethod
    def on_error(self, callback: ErrorCallback) -> None:
        """Register the callback receiving fatal runtime device errors."""

    @abc.abstractmethod
    def release(self) -> None:
        """Stop streaming and release the device."""


class CaptureDevice(abc.ABC):
    """Factory for device handles."""

    @abc.abstractmethod
    def acquire(self, constraints: CaptureConstraints) -> DeviceHandle:
        """Open the input device or raise :class:`CaptureError`."""


class CaptureError(RuntimeError):
    """Raised when audio capture cannot be initialised or fails while running."""


__all__ = [
    "CaptureConstraints",
    "CaptureDevice",
    "CaptureError",
    "DataCallback",
    "DeviceHandle",
    "ErrorCallback",
]
