from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass

import numpy as np
import sounddevice as sd

from ..errors import DeviceUnavailable, ErrorCategory, InvalidState
from ..metrics import interruptions_total
from .analysis import AnalysisType, FrequencyResult, empty_frequencies, get_frequencies

DEFAULT_TRACK = "default"


@dataclass
class PlayerConfig:
    sample_rate_hz: int = 24_000
    blocksize: int = 0
    device_id: int | None = None


@dataclass(frozen=True)
class PlaybackTrack:
    """Position reached in one outbound audio stream."""

    track_id: str
    offset: int


class _Chunk:
    __slots__ = ("track_id", "samples", "pos")

    def __init__(self, track_id: str, samples: np.ndarray) -> None:
        self.track_id = track_id
        self.samples = samples
        self.pos = 0

    @property
    def remaining(self) -> int:
        return self.samples.size - self.pos


class StreamPlayer:
    """Play queued PCM16 chunks grouped into tracks.

    Chunks are appended with :meth:`add_16bit_pcm` and pulled by the output
    stream callback. Every track keeps a running sample offset so that
    :meth:`interrupt` can report exactly how far playback got. The callback
    runs on the PortAudio thread, so queue state is guarded by a lock.
    """

    def __init__(self, cfg: PlayerConfig):
        self.cfg = cfg
        self.stream: sd.RawOutputStream | None = None
        self._lock = threading.Lock()
        self._queue: deque[_Chunk] = deque()
        self._offsets: dict[str, int] = {}
        self._enqueued: dict[str, int] = {}
        self._interrupted: set[str] = set()
        self._last_block = np.zeros(0, dtype=np.int16)
        self.log = logging.getLogger(__name__)

    @property
    def connected(self) -> bool:
        return self.stream is not None

    async def connect(self) -> None:
        if self.stream is not None:
            return
        try:
            stream = sd.RawOutputStream(
                samplerate=self.cfg.sample_rate_hz,
                blocksize=self.cfg.blocksize,
                dtype="int16",
                channels=1,
                callback=self._callback,
                device=self.cfg.device_id,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self.log.warning(
                "audio_output_unavailable",
                extra={
                    "event_type": "audio_output_unavailable",
                    "error_category": ErrorCategory.AUDIO.value,
                },
            )
            raise DeviceUnavailable(f"Could not open output device: {exc}") from exc
        self.stream = stream
        self.log.info("audio_output_start", extra={"event_type": "audio_output_start"})

    async def close(self) -> None:
        stream, self.stream = self.stream, None
        with self._lock:
            self._queue.clear()
            self._last_block = np.zeros(0, dtype=np.int16)
        if stream is not None:
            stream.stop()
            stream.close()
            self.log.info("audio_output_stop", extra={"event_type": "audio_output_stop"})

    def add_16bit_pcm(self, data: bytes | np.ndarray, track_id: str = DEFAULT_TRACK) -> np.ndarray:
        """Queue PCM16 samples at the end of ``track_id``'s stream."""
        if self.stream is None:
            raise InvalidState("Not connected: call connect() first")
        if isinstance(data, np.ndarray):
            samples = data.astype(np.int16, copy=True)
        else:
            raw = bytes(data)
            samples = np.frombuffer(raw[: len(raw) - len(raw) % 2], dtype="<i2").astype(np.int16)
        with self._lock:
            if track_id in self._interrupted or samples.size == 0:
                return samples
            self._offsets.setdefault(track_id, 0)
            self._enqueued[track_id] = self._enqueued.get(track_id, 0) + samples.size
            self._queue.append(_Chunk(track_id, samples))
        return samples

    def _callback(self, outdata, frames, time, status) -> None:  # pragma: no cover - PortAudio
        block = self.render(frames)
        outdata[:] = block.tobytes()

    def render(self, frames: int) -> np.ndarray:
        """Pull ``frames`` samples from the queue, zero-filling underruns."""
        out = np.zeros(frames, dtype=np.int16)
        filled = 0
        with self._lock:
            while filled < frames and self._queue:
                chunk = self._queue[0]
                take = min(frames - filled, chunk.remaining)
                out[filled : filled + take] = chunk.samples[chunk.pos : chunk.pos + take]
                chunk.pos += take
                self._offsets[chunk.track_id] += take
                filled += take
                if chunk.remaining == 0:
                    self._queue.popleft()
            self._last_block = out[:filled].copy()
        return out

    def current_track(self) -> PlaybackTrack | None:
        with self._lock:
            return self._current_locked()

    def _current_locked(self) -> PlaybackTrack | None:
        if not self._queue:
            return None
        track_id = self._queue[0].track_id
        return PlaybackTrack(track_id=track_id, offset=self._offsets[track_id])

    def enqueued_samples(self, track_id: str) -> int:
        return self._enqueued.get(track_id, 0)

    async def interrupt(self) -> PlaybackTrack | None:
        """Stop playback now and report the track and sample offset reached.

        Returns ``None`` when nothing is playing. Further chunks for the
        interrupted track are ignored.
        """
        with self._lock:
            current = self._current_locked()
            if current is None:
                return None
            self._interrupted.add(current.track_id)
            self._queue.clear()
            self._last_block = np.zeros(0, dtype=np.int16)
        interruptions_total.inc()
        self.log.info(
            "playback_interrupted",
            extra={
                "event_type": "playback_interrupted",
                "track_id": current.track_id,
                "offset": current.offset,
            },
        )
        return current

    def reset(self) -> None:
        with self._lock:
            self._queue.clear()
            self._offsets.clear()
            self._enqueued.clear()
            self._interrupted.clear()
            self._last_block = np.zeros(0, dtype=np.int16)

    def get_frequencies(self, analysis_type: AnalysisType = "voice") -> FrequencyResult:
        """Spectrum of the block most recently played; zeros when idle."""
        with self._lock:
            block = self._last_block if self._queue else np.zeros(0, dtype=np.int16)
        if block.size == 0:
            return empty_frequencies(analysis_type, self.cfg.sample_rate_hz)
        return get_frequencies(block, self.cfg.sample_rate_hz, analysis_type)
