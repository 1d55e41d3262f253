from types import SimpleNamespace

import pytest

from lecturescribe.core.audio.base import CaptureConstraints, CaptureError
from lecturescribe.core.audio.sounddevice_backend import (
    SoundDeviceInput,
    format_device_table,
    list_input_devices,
)


class FakePortAudioError(Exception):
    pass


class FakeStream:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.started = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.started = False

    def close(self) -> None:
        self.closed = True


def _fake_sd(rejected_rates=(), unknown_devices=()):
    streams = []

    def input_stream(**kwargs):
        if kwargs["device"] in unknown_devices:
            raise ValueError(f"No input device matching {kwargs['device']!r}")
        if kwargs["samplerate"] in rejected_rates:
            raise FakePortAudioError("Invalid sample rate")
        stream = FakeStream(**kwargs)
        streams.append(stream)
        return stream

    devices = [
        {"name": "Built-in Output", "max_input_channels": 0, "default_samplerate": 48000.0, "hostapi": 0},
        {"name": "Built-in Microphone", "max_input_channels": 2, "default_samplerate": 48000.0, "hostapi": 0},
        {"name": "USB Mic", "max_input_channels": 1, "default_samplerate": 44100.0, "hostapi": 1},
    ]

    def query_devices(device=None, kind=None):
        if device is None and kind is None:
            return devices
        return {"default_samplerate": 48000.0}

    module = SimpleNamespace(
        PortAudioError=FakePortAudioError,
        InputStream=input_stream,
        query_devices=query_devices,
        query_hostapis=lambda: [{"name": "Core Audio"}, {"name": "ALSA"}],
    )
    return module, streams


def test_list_input_devices_skips_outputs():
    sd, _ = _fake_sd()

    devices = list_input_devices(sd)

    assert [device.id for device in devices] == [1, 2]
    assert devices[1].hostapi == "ALSA"
    assert devices[1].default_samplerate == 44100.0


def test_format_device_table():
    sd, _ = _fake_sd()

    table = format_device_table(list_input_devices(sd))

    assert "Built-in Microphone" in table
    assert "USB Mic" in table
    assert "Built-in Output" not in table
    assert format_device_table([]) == "No audio input devices found."


def test_acquire_opens_stream_with_requested_format(monkeypatch):
    sd, streams = _fake_sd()
    monkeypatch.setattr("lecturescribe.core.audio.sounddevice_backend._import_sounddevice", lambda: sd)

    handle = SoundDeviceInput().acquire(CaptureConstraints(sample_rate=16000, channel_count=1, device="2"))

    assert handle.sample_rate == 16000
    assert handle.channels == 1
    assert streams[0].kwargs["device"] == 2
    assert streams[0].started

    handle.release()
    assert streams[0].closed


def test_acquire_falls_back_to_supported_rate(monkeypatch):
    sd, streams = _fake_sd(rejected_rates=(16000,))
    monkeypatch.setattr("lecturescribe.core.audio.sounddevice_backend._import_sounddevice", lambda: sd)

    handle = SoundDeviceInput().acquire(CaptureConstraints(sample_rate=16000))

    assert handle.sample_rate == 48000
    assert len(streams) == 1


def test_unknown_device_raises_capture_error(monkeypatch):
    sd, _ = _fake_sd(unknown_devices=("Nope",))
    monkeypatch.setattr("lecturescribe.core.audio.sounddevice_backend._import_sounddevice", lambda: sd)

    with pytest.raises(CaptureError):
        SoundDeviceInput().acquire(CaptureConstraints(device="Nope"))
