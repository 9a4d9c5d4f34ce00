import io
import wave

import numpy as np

from realtime_calendar_agent.audio.wav import decode_pcm16, resample


def test_decode_produces_playable_wav():
    samples = np.arange(-100, 100, dtype="<i2")
    decoded = decode_pcm16(samples.tobytes(), 24_000, 24_000)

    assert decoded.sample_rate == 24_000
    assert decoded.samples.tolist() == samples.tolist()
    with wave.open(io.BytesIO(decoded.wav)) as wf:
        assert wf.getnchannels() == 1
        assert wf.getsampwidth() == 2
        assert wf.getframerate() == 24_000
        assert wf.getnframes() == 200
    assert abs(decoded.duration_s - 200 / 24_000) < 1e-9


def test_decode_drops_trailing_odd_byte():
    decoded = decode_pcm16(b"\x01\x00\x02\x00\x03", 24_000, 24_000)
    assert decoded.samples.tolist() == [1, 2]


def test_resample_changes_length():
    samples = np.zeros(2400, dtype=np.int16)
    assert resample(samples, 24_000, 16_000).size == 1600
    assert resample(samples, 24_000, 48_000).size == 4800


def test_empty_input():
    decoded = decode_pcm16(b"", 24_000, 24_000)
    assert decoded.samples.size == 0
    assert decoded.duration_s == 0.0
