"""Realtime session: microphone, speaker, conversation and tools on one channel."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any, Literal

from .audio.capture import MicConfig, MicRecorder
from .audio.playback import PlayerConfig, StreamPlayer
from .auth import TokenProvider
from .config import Settings
from .errors import ErrorCategory, InvalidState, TransportError
from .handlers.core import (
    handle_conversation_interrupted,
    handle_conversation_updated,
    handle_error,
)
from .handlers.tools import Tool, ToolRegistry, handle_tool_call
from .state.conversation import Conversation, ConversationItem, FunctionCall, ItemDelta
from .state.input_audio import InputAudioBuffer
from .state.memory import MemoryStore
from .transport.client import (
    NETWORK_ERRORS,
    ConnectionState,
    RealtimeClient,
    build_ws_url_headers,
)
from .transport.events import Dispatcher

TurnDetection = Literal["server_vad", "none"]
UpdateListener = Callable[[ConversationItem, ItemDelta | None], None]

log = logging.getLogger(__name__)


class RealtimeSession:
    """Owns one realtime connection and everything that feeds it.

    Server events are handled strictly in arrival order by one handler per
    event type. Tool calls run as separate tasks so a slow calendar request
    does not hold up audio, and their results are sent back on the channel.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        instructions: str = "",
        tokens: TokenProvider | None = None,
        connector: Callable[..., Any] | None = None,
        on_update: UpdateListener | None = None,
    ) -> None:
        self.settings = settings
        self.instructions = instructions
        self.tokens = tokens or TokenProvider(settings.calendar_token)
        self.on_update = on_update
        self.state = ConnectionState.DISCONNECTED

        self.memory = MemoryStore()
        self.conversation = Conversation(settings.sample_rate_hz)
        self.tools = ToolRegistry()
        self.recorder = MicRecorder(
            MicConfig(
                sample_rate_hz=settings.sample_rate_hz,
                chunk_ms=settings.chunk_ms,
                device_id=settings.input_device_id,
            )
        )
        self.player = StreamPlayer(
            PlayerConfig(
                sample_rate_hz=settings.sample_rate_hz,
                device_id=settings.output_device_id,
            )
        )

        self.dispatcher: Dispatcher[dict] = Dispatcher()
        url, headers = build_ws_url_headers(settings)
        self.client = RealtimeClient(
            url,
            headers,
            self.dispatcher.dispatch,
            on_close=self._on_channel_closed,
            connector=connector,
        )
        self._input_audio = InputAudioBuffer()
        self._lookback_bytes = self.conversation.ms_to_byte(settings.input_audio_lookback_ms)
        self._tool_tasks: set[asyncio.Task] = set()
        self._closed = asyncio.Event()
        self._closed.set()
        self._attempt = 0
        self._register_handlers()
        self._reset_config()

    # Setup -----------------------------------------------------------------

    def _register_handlers(self) -> None:
        d = self.dispatcher
        d.on("error", self._on_error)
        d.on("session.created", self._on_session_created)
        d.on("input_audio_buffer.speech_started", self._on_speech_started)
        d.on_many(
            (t for t in self.conversation.event_types if t not in d.event_types),
            self._on_conversation_event,
        )

    def _reset_config(self) -> None:
        s = self.settings
        self.client.session_config = {
            "modalities": ["text", "audio"],
            "instructions": self.instructions,
            "voice": s.voice_name,
            "input_audio_format": "pcm16",
            "output_audio_format": "pcm16",
            "input_audio_transcription": {"model": s.transcribe_model},
            "turn_detection": {"type": "server_vad"} if s.turn_detection == "server_vad" else None,
            "tools": self.tools.specs(),
            "tool_choice": "auto",
        }

    def add_tool(self, tool: Tool) -> None:
        """Register ``tool``; only allowed while disconnected."""
        if self.state is not ConnectionState.DISCONNECTED:
            raise InvalidState("Tools must be added before connecting")
        self.tools.register(tool)
        self.client.session_config["tools"] = self.tools.specs()

    def add_tools(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self.add_tool(tool)

    # Connection lifecycle ----------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    async def connect(self) -> None:
        if self.state is ConnectionState.CONNECTED:
            raise InvalidState("Already connected, use disconnect() first")
        if self.state is ConnectionState.CONNECTING:
            raise InvalidState("A connection attempt is already in progress")
        self.state = ConnectionState.CONNECTING
        self._closed.clear()
        self._attempt += 1
        attempt = self._attempt
        try:
            await self.recorder.begin()
            await self.player.connect()
            self.client.session_config.update(
                instructions=self.instructions,
                input_audio_transcription={"model": self.settings.transcribe_model},
                voice=self.settings.voice_name,
                tools=self.tools.specs(),
            )
            await self.client.connect()
            if attempt != self._attempt:
                raise InvalidState("Connection attempt was interrupted by disconnect()")
        except BaseException:
            # A disconnect that interrupted this attempt has already cleaned up.
            if attempt == self._attempt:
                self.state = ConnectionState.DISCONNECTED
                self._closed.set()
                await self.recorder.end()
            raise
        self.state = ConnectionState.CONNECTED
        log.info(
            "session_connected",
            extra={"event_type": "session_connected", "tools": self.tools.names()},
        )

        await self.send_user_message_content(
            [{"type": "input_text", "text": self.settings.opening_message}]
        )
        if self.get_turn_detection_type() == "server_vad":
            await self.recorder.record(self.append_input_audio)

    async def disconnect(self) -> None:
        """Close the channel, release the microphone and stop playback."""
        self._attempt += 1
        self.state = ConnectionState.DISCONNECTED
        self._closed.set()
        await self.client.close()
        await self.recorder.end()
        await self.player.interrupt()

    async def reset(self) -> None:
        """Return to a clean disconnected baseline.

        Stops capture and playback, drops transport state, cancels running
        tool calls and clears the conversation and memory. Registered tools
        are kept.
        """
        await self.disconnect()
        tasks = list(self._tool_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tool_tasks.clear()
        self.conversation.clear()
        self.memory.clear()
        self._input_audio.clear()
        self.player.reset()
        self._reset_config()
        log.info("session_reset", extra={"event_type": "session_reset"})

    async def wait_closed(self) -> None:
        """Wait until the session is disconnected by either side."""
        await self._closed.wait()

    async def aclose(self) -> None:
        await self.reset()
        await self.player.close()

    async def _on_channel_closed(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self._closed.set()
        await self.recorder.end()
        log.warning(
            "channel_closed",
            extra={"event_type": "channel_closed", "error_category": ErrorCategory.NETWORK.value},
        )

    # Outbound ---------------------------------------------------------------

    async def update_session(self, **fields: Any) -> None:
        await self.client.update_session(**fields)

    def get_turn_detection_type(self) -> str | None:
        turn_detection = self.client.session_config.get("turn_detection") or {}
        return turn_detection.get("type")

    async def change_turn_detection(self, mode: TurnDetection) -> None:
        """Switch between server VAD and manual turn taking."""
        if mode == "none" and self.recorder.recording:
            await self.recorder.pause()
        await self.update_session(turn_detection=None if mode == "none" else {"type": "server_vad"})
        if mode == "server_vad" and self.is_connected and not self.recorder.recording:
            await self.recorder.record(self.append_input_audio)

    def append_input_audio(self, data: bytes) -> None:
        """Forward one microphone frame to the model."""
        if not data or not self.is_connected:
            return
        self.client.append_audio(data)
        self._input_audio.extend(data)
        if self.get_turn_detection_type() == "server_vad":
            self._trim_input_audio()

    def _trim_input_audio(self) -> None:
        """Drop microphone audio no open or future speech segment can ask for."""
        buffer = self._input_audio
        if len(buffer) <= 2 * self._lookback_bytes:
            return
        floor = buffer.end - self._lookback_bytes
        start_ms = self.conversation.pending_speech_start_ms()
        if start_ms is not None:
            floor = min(floor, self.conversation.ms_to_byte(start_ms))
        buffer.trim(floor)

    async def start_turn(self) -> None:
        """Manual mode: start streaming the microphone."""
        if not self.is_connected:
            raise InvalidState("Not connected")
        if not self.recorder.recording:
            await self.recorder.record(self.append_input_audio)

    async def end_turn(self) -> None:
        """Manual mode: stop the microphone and ask for a response."""
        if self.recorder.recording:
            await self.recorder.pause()
        await self.create_response()

    async def send_user_message_content(self, content: list[dict]) -> None:
        await self.client.send_json(
            {
                "type": "conversation.item.create",
                "item": {"type": "message", "role": "user", "content": content},
            }
        )
        await self.create_response()

    async def create_response(self) -> None:
        if self.get_turn_detection_type() is None and self._input_audio:
            await self.client.send_json({"type": "input_audio_buffer.commit"})
            self.conversation.queue_input_audio(self._input_audio.take())
        await self.client.send_json({"type": "response.create"})

    async def cancel_response(
        self, item_id: str | None = None, sample_count: int = 0
    ) -> ConversationItem | None:
        """Cancel the in-flight response and truncate ``item_id`` at ``sample_count``."""
        if item_id is None:
            await self.client.send_json({"type": "response.cancel"})
            return None
        item = self.conversation.get_item(item_id)
        if item is None:
            raise InvalidState(f'Could not find item "{item_id}"')
        if item.type != "message" or item.role != "assistant":
            raise InvalidState("Can only cancel responses for assistant messages")
        await self.client.send_json({"type": "response.cancel"})
        audio_index = next(
            (i for i, part in enumerate(item.content) if part.get("type") == "audio"), None
        )
        if audio_index is None:
            raise InvalidState("Could not find audio on item to cancel")
        await self.client.send_json(
            {
                "type": "conversation.item.truncate",
                "item_id": item_id,
                "content_index": audio_index,
                "audio_end_ms": sample_count * 1000 // self.settings.sample_rate_hz,
            }
        )
        return item

    # Conversation -------------------------------------------------------------

    def get_items(self) -> list[ConversationItem]:
        return self.conversation.get_items()

    async def delete_item(self, item_id: str) -> ConversationItem | None:
        """Remove an item locally and, when connected, on the server too."""
        item = self.conversation.delete_item(item_id)
        if item is not None and self.is_connected:
            await self.client.send_json({"type": "conversation.item.delete", "item_id": item_id})
        return item

    # Inbound ------------------------------------------------------------------

    async def _on_error(self, event: dict) -> None:
        await handle_error(event)

    async def _on_session_created(self, event: dict) -> None:
        session = event.get("session") or {}
        log.info(
            "session_created", extra={"event_type": "session_created", "id": session.get("id")}
        )

    async def _on_speech_started(self, event: dict) -> None:
        self.conversation.process_event(event)
        await handle_conversation_interrupted(self)

    async def _on_conversation_event(self, event: dict) -> None:
        item, delta = self.conversation.process_event(event, self._input_audio)
        if item is None:
            return
        await handle_conversation_updated(item, delta, self.player, self.settings.sample_rate_hz)
        if self.on_update is not None:
            self.on_update(item, delta)
        tool = item.formatted.tool
        if event.get("type") == "response.output_item.done" and tool and item.status == "completed":
            self._schedule_tool_call(tool)

    def _schedule_tool_call(self, call: FunctionCall) -> None:
        task = asyncio.create_task(self._run_tool_call(call))
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_tasks.discard)

    async def _run_tool_call(self, call: FunctionCall) -> None:
        try:
            await handle_tool_call(call, self.client, self.tools)
        except (TransportError, *NETWORK_ERRORS):
            log.warning(
                "tool_result_undelivered",
                extra={
                    "event_type": "tool_result_undelivered",
                    "call_id": call.call_id,
                    "error_category": ErrorCategory.NETWORK.value,
                },
            )
