"""PCM16 decoding into a replayable WAV container.

Everything here is a pure function of its inputs so it can be unit tested
against fixed sample buffers.
"""

from __future__ import annotations

import io
import wave
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class DecodedAudio:
    wav: bytes
    samples: np.ndarray
    sample_rate: int

    @property
    def duration_s(self) -> float:
        return self.samples.size / self.sample_rate if self.sample_rate else 0.0


def resample(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Linear-interpolation resampling of mono int16 samples."""
    if source_rate == target_rate or samples.size == 0:
        return samples.astype(np.int16, copy=True)
    target_len = int(round(samples.size * target_rate / source_rate))
    if target_len == 0:
        return np.zeros(0, dtype=np.int16)
    src_t = np.arange(samples.size) / source_rate
    dst_t = np.arange(target_len) / target_rate
    out = np.interp(dst_t, src_t, samples.astype(np.float64))
    return np.clip(np.rint(out), -32768, 32767).astype(np.int16)


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(samples.astype("<i2").tobytes())
    return buf.getvalue()


def decode_pcm16(data: bytes | np.ndarray, source_rate: int, target_rate: int) -> DecodedAudio:
    """Decode raw little-endian PCM16 into a WAV file at ``target_rate``."""
    if isinstance(data, np.ndarray):
        pcm = data.astype(np.int16, copy=False)
    else:
        raw = bytes(data)
        if len(raw) % 2:
            raw = raw[:-1]
        pcm = np.frombuffer(raw, dtype="<i2")
    samples = resample(pcm, source_rate, target_rate)
    wav = encode_wav(samples, target_rate)
    return DecodedAudio(wav=wav, samples=samples, sample_rate=target_rate)
