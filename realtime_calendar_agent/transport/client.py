from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any
from urllib.parse import urlencode

import websockets
import websockets.exceptions

from ..config import Settings
from ..errors import ErrorCategory, InvalidState, TransportError
from ..metrics import audio_frames_dropped_total, audio_input_queue_depth
from .events import EventHandler

CloseHandler = Callable[[], Awaitable[None]]

log = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionLost(Exception):
    """Internal signal indicating the transport connection dropped."""


NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    ConnectionLost,
    OSError,
    asyncio.TimeoutError,
    websockets.exceptions.WebSocketException,
)


def build_ws_url_headers(settings: Settings) -> tuple[str, dict[str, str]]:
    """Return the realtime websocket URL and auth headers for ``settings``."""

    if settings.provider == "azure":
        if not settings.azure_openai_endpoint:
            raise TransportError("AZURE_OPENAI_ENDPOINT is required for the azure provider")
        host = settings.azure_openai_endpoint.split("://", 1)[-1].rstrip("/")
        query = urlencode(
            {
                "api-version": settings.azure_openai_api_version,
                "deployment": settings.azure_openai_deployment,
            }
        )
        return f"wss://{host}/openai/realtime?{query}", {"api-key": settings.azure_openai_api_key}

    base = (settings.openai_base_url or "https://api.openai.com/v1").rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    url = f"{base}/realtime?{urlencode({'model': settings.realtime_model})}"
    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "OpenAI-Beta": "realtime=v1",
    }
    return url, headers


class RealtimeClient:
    """WebSocket channel to the realtime speech model.

    ``connect`` opens the socket, sends the current session configuration and
    starts the receive, audio-send and keepalive workers. Inbound events are
    passed to ``on_event`` one at a time in arrival order. The connection is
    not re-established automatically; when the socket closes ``on_close`` is
    awaited and the client returns to ``DISCONNECTED``.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str],
        on_event: EventHandler,
        *,
        on_close: CloseHandler | None = None,
        session_config: dict | None = None,
        ping_interval: float | None = 10.0,
        ping_timeout: float = 20.0,
        connector: Callable[..., Any] | None = None,
    ):
        self.url = url
        self.headers = headers
        self.on_event = on_event
        self.on_close = on_close
        self.session_config: dict = dict(session_config or {})
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.connector = connector or websockets.connect
        self.state = ConnectionState.DISCONNECTED
        self._stop = asyncio.Event()
        self._ws: Any | None = None
        self._task: asyncio.Task | None = None
        self._opened: asyncio.Future[None] | None = None

        # Outbound audio queue (bytes)
        self._audio_q: asyncio.Queue[bytes] = asyncio.Queue(maxsize=64)

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    async def connect(self) -> None:
        """Open the channel and return once it is ready to send."""
        if self.state is not ConnectionState.DISCONNECTED:
            raise InvalidState(f"Cannot connect while {self.state.value}")
        self.state = ConnectionState.CONNECTING
        self._stop = asyncio.Event()
        self._opened = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run())
        try:
            await self._opened
            if self._stop.is_set():
                raise InvalidState("Channel was closed while connecting")
        except BaseException:
            self.state = ConnectionState.DISCONNECTED
            raise
        self.state = ConnectionState.CONNECTED
        log.info("connected", extra={"event_type": "connected"})

    async def _run(self) -> None:
        opened = self._opened
        try:
            async with self.connector(
                self.url, additional_headers=self.headers, max_size=1 << 24
            ) as ws:
                self._ws = ws
                if self.session_config:
                    await ws.send(
                        json.dumps({"type": "session.update", "session": self.session_config})
                    )
                if opened is not None and not opened.done():
                    opened.set_result(None)
                await self._run_ws(ws)
        except asyncio.CancelledError:
            # Never swallow cancellation; propagate immediately.
            raise
        except NETWORK_ERRORS as exc:
            log.warning(
                "connection_error",
                extra={
                    "event_type": "connection_error",
                    "error_category": ErrorCategory.NETWORK.value,
                },
            )
            if opened is not None and not opened.done():
                opened.set_exception(TransportError(f"Could not connect to {self.url}: {exc}"))
        except Exception as exc:
            if opened is not None and not opened.done():
                opened.set_exception(exc)
            raise
        finally:
            self._ws = None
            was_open = opened is not None and opened.done() and opened.exception() is None
            self.state = ConnectionState.DISCONNECTED
            if was_open and not self._stop.is_set():
                log.info("disconnected", extra={"event_type": "disconnected"})
                if self.on_close is not None:
                    await self.on_close()

    async def _recv_loop(self, ws: Any) -> None:
        async for raw in ws:
            try:
                event = json.loads(raw)
            except json.JSONDecodeError:
                log.debug(
                    "invalid_json",
                    extra={
                        "event_type": "invalid_json",
                        "raw": raw,
                        "error_category": ErrorCategory.PROTOCOL.value,
                    },
                )
                continue
            log.debug(
                event.get("type", "unknown"),
                extra={
                    "event_type": event.get("type"),
                    "item_id": event.get("item_id"),
                    "dropped_frames": audio_frames_dropped_total.value,
                },
            )
            await self.on_event(event)

    async def _send_audio(self, ws: Any) -> None:
        while not self._stop.is_set():
            chunk = await self._audio_q.get()
            payload = {
                "type": "input_audio_buffer.append",
                "audio": base64.b64encode(chunk).decode("ascii"),
            }
            await ws.send(json.dumps(payload))

    async def _keepalive(self, ws: Any) -> None:
        if not self.ping_interval:
            await self._stop.wait()
            return
        while not self._stop.is_set():
            await asyncio.sleep(self.ping_interval)
            pong = await ws.ping()
            await asyncio.wait_for(pong, timeout=self.ping_timeout)

    async def _run_ws(self, ws: Any) -> None:
        send_task = asyncio.create_task(self._send_audio(ws))
        recv_task = asyncio.create_task(self._recv_loop(ws))
        tasks = [send_task, recv_task]
        if self.ping_interval:
            tasks.append(asyncio.create_task(self._keepalive(ws)))
        stop_task = asyncio.create_task(self._stop.wait())

        done, pending = await asyncio.wait(tasks + [stop_task], return_when=asyncio.FIRST_COMPLETED)

        # If we were asked to stop, cancel workers and return cleanly.
        if stop_task in done or self._stop.is_set():
            stop_task.cancel()
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, stop_task, return_exceptions=True)
            return

        # Some worker finished first (either cleanly or with an error).
        for t in tasks:
            if t not in done:
                t.cancel()
        stop_task.cancel()
        await asyncio.gather(*tasks, stop_task, return_exceptions=True)

        # Prefer to surface the original exception if any worker failed.
        worker_done = next((t for t in done if t is not stop_task), None)
        if worker_done:
            exc = worker_done.exception()
            if exc is not None:
                raise exc

        # Otherwise, the server closed the socket.
        raise ConnectionLost()

    async def close(self) -> None:
        """Close the channel; safe to call when already disconnected."""
        self._stop.set()
        opened, ws, task = self._opened, self._ws, self._task
        if opened is not None and not opened.done():
            opened.set_exception(InvalidState("Channel was closed while connecting"))
        if ws is not None:
            await ws.close()
        elif task is not None:
            # Still in the handshake.
            task.cancel()
        if task is not None:
            self._task = None
            await asyncio.gather(task, return_exceptions=True)
        self.state = ConnectionState.DISCONNECTED
        self._drain_audio()

    def _drain_audio(self) -> None:
        while not self._audio_q.empty():
            self._audio_q.get_nowait()
        audio_input_queue_depth.set(0)

    def append_audio(self, chunk: bytes) -> None:
        """Queue audio to be sent to the server."""
        if not self.is_connected:
            return
        try:
            self._audio_q.put_nowait(chunk)
        except asyncio.QueueFull:
            audio_frames_dropped_total.inc()
            log.warning(
                "audio_input_queue_full",
                extra={
                    "event_type": "audio_input_queue_full",
                    "dropped_frames": audio_frames_dropped_total.value,
                    "queue_depth": self._audio_q.qsize(),
                },
            )
        audio_input_queue_depth.set(self._audio_q.qsize())

    async def send_json(self, payload: dict) -> None:
        if self._ws is None or not self.is_connected:
            raise TransportError("WebSocket is not connected")
        await self._ws.send(json.dumps(payload))

    async def update_session(self, **fields: Any) -> None:
        """Merge ``fields`` into the session config and push it when connected."""
        self.session_config.update(fields)
        if self.is_connected:
            await self.send_json({"type": "session.update", "session": self.session_config})
