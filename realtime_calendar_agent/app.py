from __future__ import annotations

import asyncio
import logging
import sys

import typer

from .config import Settings, get_settings
from .logging import configure_logging
from .state.conversation import ConversationItem, ItemDelta


def print_update(item: ConversationItem, delta: ItemDelta | None) -> None:
    """Echo finished utterances and tool activity to the terminal."""

    formatted = item.formatted
    if item.type == "message" and item.role == "user":
        if delta is not None and delta.transcript:
            typer.echo(f"user: {delta.transcript}")
    elif item.type == "message" and delta is None and item.status == "completed":
        typer.echo(f"{item.role}: {formatted.transcript or formatted.text}")
    elif item.type == "function_call" and delta is None and formatted.tool is not None:
        if item.status == "completed":
            typer.echo(f"tool: {formatted.tool.name}({formatted.tool.arguments})")
    elif item.type == "function_call_output" and delta is None:
        typer.echo(f"tool output: {formatted.output}")


async def _manual_turns(session) -> None:
    """Enter starts recording, the next Enter sends the turn."""

    loop = asyncio.get_running_loop()
    lines: asyncio.Queue[str] = asyncio.Queue()
    loop.add_reader(sys.stdin, lambda: lines.put_nowait(sys.stdin.readline()))
    typer.echo("Press Enter to talk, Enter again to send. Ctrl-D quits.")
    try:
        while session.is_connected:
            if not await lines.get():
                break
            if session.recorder.recording:
                await session.end_turn()
                typer.echo("... sent")
            else:
                await session.start_turn()
                typer.echo("recording")
    finally:
        loop.remove_reader(sys.stdin)


async def run(settings: Settings | None = None, website_text: str = "") -> None:
    """Run the voice agent until the channel closes or the user quits."""

    configure_logging()
    settings = settings or get_settings()

    # Lazy imports to avoid opening audio libraries during CLI startup.
    from .calendar_api import CalendarClient
    from .handlers.builtin import builtin_tools
    from .instructions import build_instructions
    from .session import RealtimeSession

    log = logging.getLogger(__name__)

    session = RealtimeSession(
        settings,
        instructions=build_instructions(website_text),
        on_update=print_update,
    )
    calendar = CalendarClient(
        settings.calendar_base_url,
        timezone_name=settings.calendar_timezone,
        timeout=settings.http_timeout_s,
    )
    session.add_tools(builtin_tools(session.memory, calendar, session.tokens))

    log.info(
        "agent starting",
        extra={
            "model": settings.realtime_model,
            "voice": settings.voice_name,
            "sample_rate": settings.sample_rate_hz,
            "turn_detection": settings.turn_detection,
        },
    )

    try:
        await session.connect()
        if session.get_turn_detection_type() == "server_vad":
            await session.wait_closed()
        else:
            turns = asyncio.create_task(_manual_turns(session))
            closed = asyncio.create_task(session.wait_closed())
            done, pending = await asyncio.wait(
                {turns, closed}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                task.result()
    finally:
        await session.aclose()
        await calendar.aclose()
        log.info("agent stopped", extra={"memory_keys": sorted(session.memory.get_all())})


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
