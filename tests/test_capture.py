import asyncio

import numpy as np
import pytest
import sounddevice as sd

from realtime_calendar_agent.audio.capture import MicConfig, MicRecorder
from realtime_calendar_agent.errors import DeviceUnavailable, InvalidState
from tests.fakes import fake_sounddevice


def _tone(freq: float, n: int, rate: int = 24_000) -> bytes:
    t = np.arange(n) / rate
    return (np.sin(2 * np.pi * freq * t) * 12_000).astype("<i2").tobytes()


def test_begin_record_pause_end_lifecycle():
    async def main():
        frames: list[bytes] = []
        rec = MicRecorder(MicConfig(sample_rate_hz=24_000, chunk_ms=40))
        assert rec.get_status() == "ended"

        await rec.begin()
        assert rec.get_status() == "paused"
        stream = sd.RawInputStream.instances[-1]
        assert stream.kwargs["blocksize"] == 960
        assert stream.kwargs["samplerate"] == 24_000
        assert stream.kwargs["dtype"] == "int16"

        await rec.record(frames.append)
        assert rec.recording
        assert stream.start_calls == 1

        rec._callback(b"\x01\x00" * 960, 960, None, None)
        await asyncio.sleep(0)
        assert frames == [b"\x01\x00" * 960]

        await rec.pause()
        assert rec.get_status() == "paused"
        rec._callback(b"\x02\x00" * 960, 960, None, None)
        await asyncio.sleep(0)
        assert len(frames) == 1

        await rec.end()
        assert stream.closed
        assert rec.get_status() == "ended"

    asyncio.run(main())


def test_invalid_transitions_raise():
    async def main():
        rec = MicRecorder(MicConfig())
        with pytest.raises(InvalidState):
            await rec.record(lambda frame: None)
        with pytest.raises(InvalidState):
            await rec.pause()

        await rec.begin()
        with pytest.raises(InvalidState):
            await rec.begin()
        with pytest.raises(InvalidState):
            await rec.pause()

        await rec.record(lambda frame: None)
        with pytest.raises(InvalidState):
            await rec.record(lambda frame: None)

        await rec.end()
        await rec.end()
        assert rec.get_status() == "ended"

    asyncio.run(main())


def test_missing_device_raises_device_unavailable():
    async def main():
        fake_sounddevice.available.input = False
        rec = MicRecorder(MicConfig(device_id=7))
        with pytest.raises(DeviceUnavailable):
            await rec.begin()
        assert rec.get_status() == "ended"
        assert sd.RawInputStream.instances == []

    asyncio.run(main())


def test_frequencies_are_zero_unless_recording():
    async def main():
        rec = MicRecorder(MicConfig())
        assert rec.get_frequencies().is_silent()

        await rec.begin()
        await rec.record(lambda frame: None)
        rec._callback(_tone(440.0, 960), 960, None, None)
        await asyncio.sleep(0)
        assert not rec.get_frequencies("voice").is_silent()

        await rec.pause()
        assert rec.get_frequencies().is_silent()
        await rec.end()

    asyncio.run(main())
