"""Conversation items reconstructed from realtime server events.

:class:`Conversation` is the only writer of :class:`ConversationItem`
instances. Each supported server event type has exactly one handler; the
handler returns the affected item together with the delta it applied so the
session can forward audio to the speaker and refresh the UI.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from ..audio.wav import DecodedAudio
from ..errors import ErrorCategory
from .input_audio import InputAudioBuffer

ItemRole = Literal["user", "assistant", "system", "tool"]
ItemType = Literal["message", "function_call", "function_call_output"]
ItemStatus = Literal["in_progress", "completed", "incomplete"]

BYTES_PER_SAMPLE = 2

logger = logging.getLogger(__name__)


@dataclass
class FunctionCall:
    name: str
    call_id: str
    arguments: str = ""
    type: str = "function"


@dataclass
class FormattedContent:
    text: str = ""
    transcript: str = ""
    audio: bytearray = field(default_factory=bytearray)
    file: DecodedAudio | None = None
    tool: FunctionCall | None = None
    output: str | None = None


@dataclass
class ConversationItem:
    id: str
    type: ItemType
    role: ItemRole
    status: ItemStatus
    content: list[dict[str, Any]] = field(default_factory=list)
    formatted: FormattedContent = field(default_factory=FormattedContent)
    call_id: str | None = None
    name: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status != "in_progress"


@dataclass(frozen=True)
class ItemDelta:
    text: str | None = None
    transcript: str | None = None
    audio: bytes | None = None
    arguments: str | None = None


@dataclass
class _SpeechSegment:
    audio_start_ms: int
    audio_end_ms: int | None = None
    audio: bytes | None = None


ProcessResult = tuple[ConversationItem | None, ItemDelta | None]
_NOTHING: ProcessResult = (None, None)


class Conversation:
    """Ordered conversation items plus the bookkeeping needed to build them."""

    def __init__(self, sample_rate_hz: int = 24_000) -> None:
        self.sample_rate_hz = sample_rate_hz
        self._items: list[ConversationItem] = []
        self._lookup: dict[str, ConversationItem] = {}
        self._responses: dict[str, list[str]] = {}
        self._queued_speech: dict[str, _SpeechSegment] = {}
        self._queued_transcripts: dict[str, str] = {}
        self._queued_input_audio: bytes | None = None
        self._handlers: dict[str, Callable[[dict, bytes | None], ProcessResult]] = {
            "conversation.item.created": self._item_created,
            "conversation.item.truncated": self._item_truncated,
            "conversation.item.deleted": self._item_deleted,
            "conversation.item.input_audio_transcription.completed": self._transcription_done,
            "input_audio_buffer.speech_started": self._speech_started,
            "input_audio_buffer.speech_stopped": self._speech_stopped,
            "response.created": self._response_created,
            "response.output_item.added": self._output_item_added,
            "response.output_item.done": self._output_item_done,
            "response.content_part.added": self._content_part_added,
            "response.audio_transcript.delta": self._transcript_delta,
            "response.audio.delta": self._audio_delta,
            "response.text.delta": self._text_delta,
            "response.function_call_arguments.delta": self._arguments_delta,
        }

    @property
    def event_types(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    # Queries --------------------------------------------------------------

    def get_items(self) -> list[ConversationItem]:
        return list(self._items)

    def get_item(self, item_id: str) -> ConversationItem | None:
        return self._lookup.get(item_id)

    def __len__(self) -> int:
        return len(self._items)

    # Mutations ------------------------------------------------------------

    def clear(self) -> None:
        self._items.clear()
        self._lookup.clear()
        self._responses.clear()
        self._queued_speech.clear()
        self._queued_transcripts.clear()
        self._queued_input_audio = None

    def delete_item(self, item_id: str) -> ConversationItem | None:
        """Remove ``item_id``; a second call for the same id is a no-op."""
        item = self._lookup.pop(item_id, None)
        if item is not None:
            self._items.remove(item)
        return item

    def pending_speech_start_ms(self) -> int | None:
        """Earliest start of a speech segment the server has not closed yet."""
        starts = [s.audio_start_ms for s in self._queued_speech.values() if s.audio_end_ms is None]
        return min(starts, default=None)

    def queue_input_audio(self, audio: bytes) -> None:
        """Hold committed manual-mode audio for the next user item."""
        self._queued_input_audio = bytes(audio)

    def process_event(
        self, event: dict, input_audio: bytes | InputAudioBuffer | None = None
    ) -> ProcessResult:
        handler = self._handlers.get(event.get("type", ""))
        if handler is None:
            return _NOTHING
        return handler(event, input_audio)

    # Helpers --------------------------------------------------------------

    def ms_to_byte(self, ms: int) -> int:
        return (ms * self.sample_rate_hz // 1000) * BYTES_PER_SAMPLE

    def _missing(self, event: dict, item_id: str | None) -> ProcessResult:
        logger.warning(
            "conversation_item_missing",
            extra={
                "event_type": event.get("type"),
                "item_id": item_id,
                "error_category": ErrorCategory.PROTOCOL.value,
            },
        )
        return _NOTHING

    def _open_item(self, event: dict) -> ConversationItem | None:
        item = self._lookup.get(event.get("item_id", ""))
        if item is None:
            self._missing(event, event.get("item_id"))
            return None
        if item.terminal:
            return None
        return item

    @staticmethod
    def _content_at(item: ConversationItem, index: int | None) -> dict[str, Any] | None:
        if index is None or not 0 <= index < len(item.content):
            return None
        return item.content[index]

    # Handlers -------------------------------------------------------------

    def _item_created(self, event: dict, _audio: bytes | None) -> ProcessResult:
        raw = event.get("item") or {}
        item_id = raw.get("id")
        if not item_id:
            return _NOTHING
        existing = self._lookup.get(item_id)
        if existing is not None:
            return existing, None

        item_type: ItemType = raw.get("type", "message")
        role: ItemRole = raw.get("role") or ("tool" if item_type != "message" else "system")
        item = ConversationItem(
            id=item_id,
            type=item_type,
            role=role,
            status="in_progress",
            content=[dict(part) for part in raw.get("content") or []],
            call_id=raw.get("call_id"),
            name=raw.get("name"),
        )
        formatted = item.formatted

        speech = self._queued_speech.pop(item_id, None)
        if speech is not None and speech.audio:
            formatted.audio.extend(speech.audio)
        for part in item.content:
            if part.get("type") in ("text", "input_text"):
                formatted.text += part.get("text") or ""
        transcript = self._queued_transcripts.pop(item_id, None)
        if transcript is not None:
            formatted.transcript = transcript

        if item_type == "message":
            if role == "user":
                item.status = "completed"
                if self._queued_input_audio:
                    formatted.audio = bytearray(self._queued_input_audio)
                    self._queued_input_audio = None
        elif item_type == "function_call":
            formatted.tool = FunctionCall(
                name=raw.get("name", ""),
                call_id=raw.get("call_id", ""),
                arguments=raw.get("arguments") or "",
            )
        elif item_type == "function_call_output":
            item.status = "completed"
            formatted.output = raw.get("output")

        self._items.append(item)
        self._lookup[item_id] = item
        return item, None

    def _item_truncated(self, event: dict, _audio: bytes | None) -> ProcessResult:
        item_id = event.get("item_id")
        item = self._lookup.get(item_id or "")
        if item is None:
            return self._missing(event, item_id)
        end = self.ms_to_byte(int(event.get("audio_end_ms", 0)))
        item.formatted.transcript = ""
        del item.formatted.audio[end:]
        return item, None

    def _item_deleted(self, event: dict, _audio: bytes | None) -> ProcessResult:
        item = self.delete_item(event.get("item_id", ""))
        return item, None

    def _transcription_done(self, event: dict, _audio: bytes | None) -> ProcessResult:
        item_id = event.get("item_id", "")
        transcript = event.get("transcript") or ""
        item = self._lookup.get(item_id)
        if item is None:
            self._queued_transcripts[item_id] = transcript
            return _NOTHING
        part = self._content_at(item, event.get("content_index"))
        if part is not None:
            part["transcript"] = transcript
        item.formatted.transcript = transcript
        return item, ItemDelta(transcript=transcript)

    def _speech_started(self, event: dict, _audio: bytes | None) -> ProcessResult:
        item_id = event.get("item_id", "")
        start_ms = int(event.get("audio_start_ms", 0))
        self._queued_speech[item_id] = _SpeechSegment(audio_start_ms=start_ms)
        return _NOTHING

    def _speech_stopped(
        self, event: dict, input_audio: bytes | InputAudioBuffer | None
    ) -> ProcessResult:
        item_id = event.get("item_id", "")
        end_ms = int(event.get("audio_end_ms", 0))
        speech = self._queued_speech.setdefault(item_id, _SpeechSegment(audio_start_ms=end_ms))
        speech.audio_end_ms = end_ms
        if input_audio is not None:
            start = self.ms_to_byte(speech.audio_start_ms)
            speech.audio = bytes(input_audio[start : self.ms_to_byte(end_ms)])
        return _NOTHING

    def _response_created(self, event: dict, _audio: bytes | None) -> ProcessResult:
        response_id = (event.get("response") or {}).get("id")
        if response_id:
            self._responses.setdefault(response_id, [])
        return _NOTHING

    def _output_item_added(self, event: dict, _audio: bytes | None) -> ProcessResult:
        response_id = event.get("response_id", "")
        item_id = (event.get("item") or {}).get("id")
        if item_id:
            self._responses.setdefault(response_id, []).append(item_id)
        return _NOTHING

    def _output_item_done(self, event: dict, _audio: bytes | None) -> ProcessResult:
        raw = event.get("item") or {}
        item = self._lookup.get(raw.get("id", ""))
        if item is None:
            return self._missing(event, raw.get("id"))
        tool = item.formatted.tool
        if tool is not None and raw.get("arguments") and not tool.arguments:
            tool.arguments = raw["arguments"]
        item.status = raw.get("status") or "completed"
        return item, None

    def _content_part_added(self, event: dict, _audio: bytes | None) -> ProcessResult:
        item = self._open_item(event)
        if item is None:
            return _NOTHING
        item.content.append(dict(event.get("part") or {}))
        return item, None

    def _transcript_delta(self, event: dict, _audio: bytes | None) -> ProcessResult:
        item = self._open_item(event)
        if item is None:
            return _NOTHING
        delta = event.get("delta") or ""
        part = self._content_at(item, event.get("content_index"))
        if part is not None:
            part["transcript"] = (part.get("transcript") or "") + delta
        item.formatted.transcript += delta
        return item, ItemDelta(transcript=delta)

    def _audio_delta(self, event: dict, _audio: bytes | None) -> ProcessResult:
        item = self._open_item(event)
        if item is None:
            return _NOTHING
        try:
            chunk = base64.b64decode(event.get("delta") or "", validate=True)
        except (binascii.Error, ValueError):
            logger.warning(
                "invalid_audio_delta",
                extra={
                    "event_type": "invalid_audio_delta",
                    "item_id": item.id,
                    "error_category": ErrorCategory.PROTOCOL.value,
                },
            )
            return _NOTHING
        item.formatted.audio.extend(chunk)
        return item, ItemDelta(audio=chunk)

    def _text_delta(self, event: dict, _audio: bytes | None) -> ProcessResult:
        item = self._open_item(event)
        if item is None:
            return _NOTHING
        delta = event.get("delta") or ""
        part = self._content_at(item, event.get("content_index"))
        if part is not None:
            part["text"] = (part.get("text") or "") + delta
        item.formatted.text += delta
        return item, ItemDelta(text=delta)

    def _arguments_delta(self, event: dict, _audio: bytes | None) -> ProcessResult:
        item = self._open_item(event)
        if item is None or item.formatted.tool is None:
            return _NOTHING
        delta = event.get("delta") or ""
        item.formatted.tool.arguments += delta
        return item, ItemDelta(arguments=delta)
