import numpy as np

from realtime_calendar_agent.audio.analysis import (
    FFT_SIZE,
    empty_frequencies,
    get_frequencies,
)


def _tone(freq: float, n: int = FFT_SIZE, rate: int = 24_000) -> np.ndarray:
    t = np.arange(n) / rate
    return (np.sin(2 * np.pi * freq * t) * 16_000).astype(np.int16)


def test_voice_bands_peak_at_tone():
    result = get_frequencies(_tone(440.0), 24_000, "voice", max_decibels=0.0)
    assert result.values.min() >= 0.0
    assert result.values.max() <= 1.0
    assert result.labels[int(np.argmax(result.values))] == "A4"
    assert result.frequencies.min() >= 32.0
    assert result.frequencies.max() <= 2000.0


def test_silence_is_all_zero():
    result = get_frequencies(np.zeros(FFT_SIZE, dtype=np.int16), 24_000, "music")
    assert result.is_silent()


def test_empty_result_matches_band_layout():
    empty = empty_frequencies("voice", 24_000)
    full = get_frequencies(_tone(220.0), 24_000, "voice")
    assert empty.labels == full.labels
    assert empty.values.shape == full.values.shape
    assert empty.is_silent()


def test_frequency_mode_returns_raw_bins():
    result = get_frequencies(_tone(1000.0).tobytes(), 24_000, "frequency", max_decibels=0.0)
    assert result.values.size == FFT_SIZE // 2 + 1
    peak_hz = result.frequencies[int(np.argmax(result.values))]
    assert abs(peak_hz - 1000.0) < 24_000 / FFT_SIZE
