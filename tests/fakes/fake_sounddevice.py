"""In-process stand-in for the ``sounddevice`` module.

Streams record their constructor arguments and lifecycle calls; nothing
touches PortAudio. Tests drive the audio callbacks by hand.
"""

from __future__ import annotations


class PortAudioError(Exception):
    pass


class _Availability:
    input = True
    output = True


available = _Availability()

DEVICES = [
    {"name": "Fake Mic", "max_input_channels": 1, "max_output_channels": 0},
    {"name": "Fake Speaker", "max_input_channels": 0, "max_output_channels": 2},
]


class _FakeStream:
    instances: list[_FakeStream]

    def __init__(self, *args, **kwargs) -> None:
        self.kwargs = kwargs
        self.callback = kwargs.get("callback")
        self.start_calls = 0
        self.stop_calls = 0
        self.closed = False
        self.active = False
        type(self).instances.append(self)

    def start(self) -> None:
        self.start_calls += 1
        self.active = True

    def stop(self) -> None:
        self.stop_calls += 1
        self.active = False

    def close(self) -> None:
        self.closed = True


class RawInputStream(_FakeStream):
    instances: list[_FakeStream] = []


class RawOutputStream(_FakeStream):
    instances: list[_FakeStream] = []

    def __init__(self, *args, **kwargs) -> None:
        if not available.output:
            raise PortAudioError("Error opening RawOutputStream: no default output device")
        super().__init__(*args, **kwargs)


def check_input_settings(device=None, channels=None, dtype=None, samplerate=None, **kwargs):
    if not available.input:
        raise PortAudioError("Error querying device -1")


def check_output_settings(device=None, channels=None, dtype=None, samplerate=None, **kwargs):
    if not available.output:
        raise PortAudioError("Error querying device -1")


def query_devices():
    return list(DEVICES)


def reset() -> None:
    available.input = True
    available.output = True
    RawInputStream.instances.clear()
    RawOutputStream.instances.clear()
