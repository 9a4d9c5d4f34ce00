"""Pure frequency analysis of PCM16 sample buffers.

Results are normalised decibel magnitudes in ``[0, 1]`` sampled at musical
note frequencies, which is what the visualisers draw as bars.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np

AnalysisType = Literal["frequency", "music", "voice"]

NOTE_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")
VOICE_RANGE_HZ = (32.0, 2000.0)
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0
FFT_SIZE = 8192


@dataclass(frozen=True)
class FrequencyResult:
    values: np.ndarray
    frequencies: np.ndarray
    labels: tuple[str, ...]

    def is_silent(self) -> bool:
        return not bool(np.any(self.values))


def _note_table() -> tuple[np.ndarray, tuple[str, ...]]:
    # C0 .. B8, equal temperament around A4 = 440 Hz
    semitones = np.arange(9 * 12)
    freqs = 440.0 * 2.0 ** ((semitones - 57) / 12.0)
    labels = tuple(f"{NOTE_NAMES[i % 12]}{i // 12}" for i in semitones)
    return freqs, labels


_NOTE_FREQS, _NOTE_LABELS = _note_table()


def _bands(
    analysis_type: AnalysisType, sample_rate: int, fft_size: int
) -> tuple[np.ndarray, tuple[str, ...]]:
    if analysis_type == "frequency":
        freqs = np.fft.rfftfreq(fft_size, d=1.0 / sample_rate)
        return freqs, tuple(f"{f:.0f}" for f in freqs)
    nyquist = sample_rate / 2
    if analysis_type == "voice":
        low, high = VOICE_RANGE_HZ
        mask = (_NOTE_FREQS >= low) & (_NOTE_FREQS <= min(high, nyquist))
    else:
        mask = _NOTE_FREQS <= nyquist
    labels = tuple(label for label, keep in zip(_NOTE_LABELS, mask) if keep)
    return _NOTE_FREQS[mask], labels


def empty_frequencies(
    analysis_type: AnalysisType = "voice", sample_rate: int = 24_000
) -> FrequencyResult:
    """Zeroed result with the same bands :func:`get_frequencies` would return."""
    freqs, labels = _bands(analysis_type, sample_rate, FFT_SIZE)
    return FrequencyResult(np.zeros(len(freqs), dtype=np.float32), freqs, labels)


def get_frequencies(
    samples: bytes | np.ndarray,
    sample_rate: int = 24_000,
    analysis_type: AnalysisType = "voice",
    min_decibels: float = MIN_DECIBELS,
    max_decibels: float = MAX_DECIBELS,
) -> FrequencyResult:
    """Return normalised spectral magnitudes for a mono PCM16 buffer."""

    if isinstance(samples, (bytes, bytearray, memoryview)):
        raw = bytes(samples)
        pcm = np.frombuffer(raw[: len(raw) - len(raw) % 2], dtype="<i2")
    else:
        pcm = np.asarray(samples)
    if pcm.size == 0:
        return empty_frequencies(analysis_type, sample_rate)

    data = pcm[-FFT_SIZE:].astype(np.float32) / 32768.0
    windowed = data * np.hanning(data.size)
    spectrum = np.abs(np.fft.rfft(windowed, n=FFT_SIZE)) / FFT_SIZE
    decibels = 20.0 * np.log10(np.maximum(spectrum, 1e-12))
    normalised = np.clip((decibels - min_decibels) / (max_decibels - min_decibels), 0.0, 1.0)

    freqs, labels = _bands(analysis_type, sample_rate, FFT_SIZE)
    if analysis_type == "frequency":
        return FrequencyResult(normalised.astype(np.float32), freqs, labels)

    bin_hz = sample_rate / FFT_SIZE
    indices = np.clip(np.rint(freqs / bin_hz).astype(int), 0, normalised.size - 1)
    return FrequencyResult(normalised[indices].astype(np.float32), freqs, labels)
