from __future__ import annotations

import asyncio
import importlib
import json
from contextlib import asynccontextmanager
from pathlib import Path

import typer

from .app import run as app_run
from .config import Settings
from .handlers.builtin import set_memory_tool
from .handlers.tools import ToolRegistry, handle_tool_call
from .state.conversation import Conversation
from .state.memory import MemoryStore
from .transport.client import RealtimeClient
from .transport.events import Dispatcher

app = typer.Typer(help="Realtime voice calendar agent")

devices_app = typer.Typer(help="Inspect audio devices")
app.add_typer(devices_app, name="devices")


@app.command()
def run(
    model: str | None = typer.Option(None, help="Realtime model to use"),
    voice: str | None = typer.Option(None, help="Voice name"),
    input_device: int | None = typer.Option(None, help="Input device ID"),
    output_device: int | None = typer.Option(None, help="Output device ID"),
    turn_detection: str | None = typer.Option(
        None, help="'server_vad' for hands-free turns, 'none' for push-to-talk"
    ),
    website_file: Path | None = typer.Option(
        None,
        exists=True,
        dir_okay=False,
        readable=True,
        help="Text file with website data embedded into the instructions",
    ),
    calendar_token: str | None = typer.Option(None, help="Bearer token for the calendar API"),
    verbose: bool = typer.Option(False, help="Print effective settings"),
) -> None:
    """Run the voice agent."""
    overrides: dict[str, object] = {}
    if model is not None:
        overrides["realtime_model"] = model
    if voice is not None:
        overrides["voice_name"] = voice
    if input_device is not None:
        overrides["input_device_id"] = input_device
    if output_device is not None:
        overrides["output_device_id"] = output_device
    if turn_detection is not None:
        overrides["turn_detection"] = turn_detection
    if calendar_token is not None:
        overrides["calendar_token"] = calendar_token
    settings = Settings(**overrides)
    website_text = website_file.read_text(encoding="utf-8") if website_file else ""
    if verbose:
        typer.echo(settings.model_dump_json(indent=2, exclude={"openai_api_key", "calendar_token"}))
    asyncio.run(app_run(settings=settings, website_text=website_text))


@devices_app.command("list")
def list_devices() -> None:
    """Print available audio devices."""
    sd = importlib.import_module("sounddevice")
    devices = sd.query_devices()
    for idx, dev in enumerate(devices):
        inp = dev["max_input_channels"]
        out = dev["max_output_channels"]
        typer.echo(f"{idx}: {dev['name']} (in={inp} out={out})")


FAKE_EXCHANGE = [
    {"type": "session.created", "session": {"id": "sess_fake"}},
    {
        "type": "conversation.item.created",
        "item": {
            "id": "item_call",
            "type": "function_call",
            "name": "set_memory",
            "call_id": "call_1",
            "arguments": "",
        },
    },
    {
        "type": "response.function_call_arguments.delta",
        "item_id": "item_call",
        "delta": '{"key": "favorite_color",',
    },
    {
        "type": "response.function_call_arguments.delta",
        "item_id": "item_call",
        "delta": ' "value": "blue"}',
    },
    {
        "type": "response.output_item.done",
        "item": {"id": "item_call", "type": "function_call", "status": "completed"},
    },
    {"type": "response.done", "response": {"id": "resp_1"}},
]


class _FakeWebSocket:
    def __init__(self, queued: list[dict], sent: list[dict]):
        self._queue = asyncio.Queue[str | None]()
        for ev in queued:
            self._queue.put_nowait(json.dumps(ev))
        self.sent = sent

    def __aiter__(self) -> _FakeWebSocket:
        return self

    async def __anext__(self) -> str:
        msg = await self._queue.get()
        if msg is None:
            raise StopAsyncIteration
        return msg

    async def send(self, msg: str) -> None:
        self.sent.append(json.loads(msg))

    async def close(self) -> None:
        self._queue.put_nowait(None)


@app.command()
def test(fake_server: bool = typer.Option(False, help="Run against a fake server")) -> None:
    """Run a short scripted tool-call exchange for testing."""

    if not fake_server:
        typer.echo("No tests specified")
        return

    sent: list[dict] = []

    @asynccontextmanager
    async def _fake_connect(*args, **kwargs):
        ws = _FakeWebSocket(FAKE_EXCHANGE, sent)
        try:
            yield ws
        finally:
            await ws.close()

    async def main() -> MemoryStore:
        memory = MemoryStore()
        registry = ToolRegistry()
        registry.register(set_memory_tool(memory))
        conversation = Conversation()
        dispatcher: Dispatcher[dict] = Dispatcher()
        done = asyncio.Event()

        async def on_conversation_event(event: dict) -> None:
            item, _ = conversation.process_event(event)
            is_done = event["type"] == "response.output_item.done"
            if is_done and item is not None and item.formatted.tool is not None:
                await handle_tool_call(item.formatted.tool, client, registry)

        async def on_response_done(event: dict) -> None:
            done.set()

        dispatcher.on_many(conversation.event_types, on_conversation_event)
        dispatcher.on("response.done", on_response_done)

        client = RealtimeClient(
            "ws://fake",
            {},
            dispatcher.dispatch,
            session_config={"tools": registry.specs()},
            ping_interval=None,
            connector=_fake_connect,
        )
        await client.connect()
        try:
            await asyncio.wait_for(done.wait(), timeout=5)
        finally:
            await client.close()
        return memory

    memory = asyncio.run(main())
    typer.echo(f"memory: {json.dumps(memory.get_all())}")
    typer.echo(f"sent: {', '.join(msg['type'] for msg in sent)}")
    typer.echo("Fake server exchange completed")


if __name__ == "__main__":  # pragma: no cover
    app()
