from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

import sounddevice as sd

from ..errors import DeviceUnavailable, ErrorCategory, InvalidState
from .analysis import AnalysisType, FrequencyResult, empty_frequencies, get_frequencies

RecorderStatus = Literal["ended", "paused", "recording"]
FrameHandler = Callable[[bytes], None]


@dataclass
class MicConfig:
    sample_rate_hz: int = 24_000
    chunk_ms: int = 40
    device_id: int | None = None


class MicRecorder:
    """Capture mono PCM16 frames from the microphone.

    ``begin`` acquires the device, ``record`` starts delivering fixed-size
    frames to a callback on the event loop, ``pause`` stops delivery while
    keeping the device and ``end`` releases it. The PortAudio callback runs on
    its own thread, so frames are handed to the loop with
    ``call_soon_threadsafe``.
    """

    def __init__(self, cfg: MicConfig):
        self.cfg = cfg
        self.stream: sd.RawInputStream | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_frame: FrameHandler | None = None
        self._status: RecorderStatus = "ended"
        self._last_frame = b""
        self.log = logging.getLogger(__name__)

    @property
    def blocksize(self) -> int:
        return int(self.cfg.sample_rate_hz * self.cfg.chunk_ms / 1_000)

    def get_status(self) -> RecorderStatus:
        return self._status

    @property
    def recording(self) -> bool:
        return self._status == "recording"

    async def begin(self) -> None:
        if self.stream is not None:
            raise InvalidState("Already connected: call end() before begin()")
        self._loop = asyncio.get_running_loop()
        try:
            sd.check_input_settings(
                device=self.cfg.device_id,
                channels=1,
                dtype="int16",
                samplerate=self.cfg.sample_rate_hz,
            )
            self.stream = sd.RawInputStream(
                samplerate=self.cfg.sample_rate_hz,
                blocksize=self.blocksize,
                dtype="int16",
                channels=1,
                callback=self._callback,
                device=self.cfg.device_id,
            )
        except (sd.PortAudioError, ValueError) as exc:
            self.log.warning(
                "audio_input_unavailable",
                extra={
                    "event_type": "audio_input_unavailable",
                    "error_category": ErrorCategory.AUDIO.value,
                },
            )
            raise DeviceUnavailable(f"Could not open input device: {exc}") from exc
        self._status = "paused"
        self.log.info(
            "audio_input_begin",
            extra={"event_type": "audio_input_begin", "sample_rate": self.cfg.sample_rate_hz},
        )

    def _callback(self, indata, frames, time, status) -> None:  # pragma: no cover - PortAudio
        if status:
            self.log.debug(
                "audio_input_status",
                extra={"event_type": "audio_input_status", "status": str(status)},
            )
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._deliver, bytes(indata))

    def _deliver(self, data: bytes) -> None:
        if self._status != "recording" or self._on_frame is None:
            return
        self._last_frame = data
        self._on_frame(data)

    async def record(self, on_frame: FrameHandler) -> None:
        if self.stream is None:
            raise InvalidState("Session ended: call begin() first")
        if self._status == "recording":
            raise InvalidState("Already recording: call pause() first")
        self._on_frame = on_frame
        self.stream.start()
        self._status = "recording"

    async def pause(self) -> None:
        if self.stream is None:
            raise InvalidState("Session ended: call begin() first")
        if self._status != "recording":
            raise InvalidState("Already paused: call record() first")
        self.stream.stop()
        self._status = "paused"
        self._last_frame = b""

    async def end(self) -> None:
        stream, self.stream = self.stream, None
        if stream is not None:
            if self._status == "recording":
                stream.stop()
            stream.close()
            self.log.info("audio_input_end", extra={"event_type": "audio_input_end"})
        self._status = "ended"
        self._on_frame = None
        self._last_frame = b""

    def get_frequencies(self, analysis_type: AnalysisType = "voice") -> FrequencyResult:
        """Spectrum of the most recent frame; zeros when not recording."""
        if self._status != "recording" or not self._last_frame:
            return empty_frequencies(analysis_type, self.cfg.sample_rate_hz)
        return get_frequencies(self._last_frame, self.cfg.sample_rate_hz, analysis_type)
