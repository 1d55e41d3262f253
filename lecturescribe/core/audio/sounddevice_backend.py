"""Audio capture implementation powered by sounddevice/PortAudio."""

from __future__ import annotations

import contextlib
import threading
from dataclasses import dataclass
from typing import List, Optional

from ...logging import get_logger
from ...utils.audio import float_to_pcm16
from .base import (
    CaptureConstraints,
    CaptureDevice,
    CaptureError,
    DataCallback,
    DeviceHandle,
    ErrorCallback,
)

LOGGER = get_logger(__name__)

_FALLBACK_SAMPLE_RATES = (48_000, 44_100, 32_000, 24_000, 22_050, 16_000)


def _import_sounddevice():
    try:
        import sounddevice as sd
    except (ImportError, OSError) as exc:  # pragma: no cover - depends on PortAudio install
        raise CaptureError("sounddevice (and PortAudio) is required for microphone capture") from exc
    return sd


def _parse_device(device: Optional[str]) -> Optional[int | str]:
    if device is None:
        return None
    if device.isdigit():
        return int(device)
    return device


class SoundDeviceHandle(DeviceHandle):
    """Running PortAudio input stream forwarding int16 PCM bytes."""

    def __init__(self, sd_module, device: Optional[int | str], sample_rate: int, channels: int, block_size: int) -> None:
        self._sd = sd_module
        self._device = device
        self.sample_rate = sample_rate
        self.channels = channels
        self._block_size = block_size
        self._lock = threading.Lock()
        self._data_callback: Optional[DataCallback] = None
        self._error_callback: Optional[ErrorCallback] = None
        self._stream = None

    def on_data(self, callback: DataCallback) -> None:
        with self._lock:
            self._data_callback = callback

    def on_error(self, callback: ErrorCallback) -> None:
        with self._lock:
            self._error_callback = callback

    def open(self) -> None:
        stream = self._sd.InputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="float32",
            blocksize=self._block_size,
            device=self._device,
            callback=self._callback,
            finished_callback=self._finished,
        )
        try:
            stream.start()
        except Exception:
            with contextlib.suppress(Exception):
                stream.close()
            raise
        self._stream = stream

    def _callback(self, indata, frames, time_info, status) -> None:  # pragma: no cover - executed in runtime
        if status:
            LOGGER.warning("sounddevice status: %s", status)
        with self._lock:
            callback = self._data_callback
        if callback is not None:
            callback(float_to_pcm16(indata))

    def _finished(self) -> None:  # pragma: no cover - executed in runtime
        # PortAudio also calls this after a normal stop; only report when the
        # stream went away without release().
        if self._stream is None:
            return
        with self._lock:
            callback = self._error_callback
        if callback is not None:
            callback(CaptureError(f"Input stream on {self._device} stopped unexpectedly"))

    def release(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        LOGGER.info("Releasing input device %s", self._device)
        with contextlib.suppress(Exception):
            stream.stop()
        with contextlib.suppress(Exception):
            stream.close()


class SoundDeviceInput(CaptureDevice):
    """Microphone input using the sounddevice library."""

    def __init__(self, block_size: int = 1024) -> None:
        self._block_size = block_size

    def acquire(self, constraints: CaptureConstraints) -> DeviceHandle:
        sd = _import_sounddevice()
        device = _parse_device(constraints.device)
        if constraints.echo_cancellation or constraints.noise_suppression or constraints.auto_gain_control:
            LOGGER.debug(
                "PortAudio does not expose echo cancellation/noise suppression/AGC; "
                "capturing %s without them",
                device,
            )

        last_error: Optional[Exception] = None
        for sample_rate in self._sample_rate_candidates(sd, device, constraints.sample_rate):
            handle = SoundDeviceHandle(sd, device, sample_rate, constraints.channel_count, self._block_size)
            try:
                handle.open()
            except sd.PortAudioError as exc:  # pragma: no cover - depends on runtime device
                last_error = exc
                if "sample rate" in str(exc).lower():
                    LOGGER.warning("Device %s rejected %s Hz: %s", device, sample_rate, exc)
                    continue
                raise CaptureError(str(exc)) from exc
            except ValueError as exc:
                # sounddevice raises ValueError for unknown device names/ids.
                raise CaptureError(str(exc)) from exc
            if sample_rate != constraints.sample_rate:
                LOGGER.warning(
                    "Adjusted sample rate on %s from %s Hz to %s Hz",
                    device,
                    constraints.sample_rate,
                    sample_rate,
                )
            LOGGER.info(
                "Capturing from %s with %s channel(s) at %s Hz",
                device if device is not None else "default input",
                constraints.channel_count,
                sample_rate,
            )
            return handle

        message = f"Failed to open audio input {device}: no supported sample rate"
        if last_error is not None:
            message = f"{message} ({last_error})"
        raise CaptureError(message)

    def _sample_rate_candidates(self, sd, device, requested: int) -> List[int]:
        candidates = [requested] if requested > 0 else []
        try:
            info = sd.query_devices(device, "input")
            default_rate = int(float(info.get("default_samplerate") or 0))
        except Exception as exc:  # pragma: no cover - depends on runtime availability
            LOGGER.debug("Failed to query device info for %s: %s", device, exc)
            default_rate = 0
        if default_rate and default_rate not in candidates:
            candidates.append(default_rate)
        for rate in _FALLBACK_SAMPLE_RATES:
            if rate not in candidates:
                candidates.append(rate)
        return candidates


@dataclass
class DeviceInfo:
    id: int
    name: str
    max_input_channels: int
    default_samplerate: float
    hostapi: str


def list_input_devices(sd_module=None) -> List[DeviceInfo]:
    """Return every device that exposes at least one input channel."""

    sd = sd_module or _import_sounddevice()
    hostapis = list(sd.query_hostapis())
    devices: List[DeviceInfo] = []
    for index, info in enumerate(sd.query_devices()):
        channels = int(info.get("max_input_channels") or 0)
        if channels <= 0:
            continue
        hostapi_index = info.get("hostapi")
        hostapi = ""
        if hostapi_index is not None and 0 <= int(hostapi_index) < len(hostapis):
            hostapi = str(hostapis[int(hostapi_index)].get("name", ""))
        devices.append(
            DeviceInfo(
                id=index,
                name=str(info.get("name", "")),
                max_input_channels=channels,
                default_samplerate=float(info.get("default_samplerate") or 0.0),
                hostapi=hostapi,
            )
        )
    return devices


def format_device_table(devices: Optional[List[DeviceInfo]] = None) -> str:
    devices = list_input_devices() if devices is None else devices
    if not devices:
        return "No audio input devices found."
    lines = ["ID  | Channels | Rate    | Host API    | Name"]
    for device in devices:
        lines.append(
            f"{device.id:<3} | {device.max_input_channels:<8} | "
            f"{int(device.default_samplerate):<7} | {device.hostapi[:11]:<11} | {device.name}"
        )
    return "\n".join(lines)


__all__ = [
    "DeviceInfo",
    "SoundDeviceHandle",
    "SoundDeviceInput",
    "format_device_table",
    "list_input_devices",
]
