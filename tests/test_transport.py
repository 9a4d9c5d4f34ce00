import asyncio
import base64
import logging

import pytest

from realtime_calendar_agent.config import Settings
from realtime_calendar_agent.errors import InvalidState, TransportError
from realtime_calendar_agent.metrics import audio_frames_dropped_total
from realtime_calendar_agent.transport.client import (
    ConnectionState,
    RealtimeClient,
    build_ws_url_headers,
)
from tests.fakes.fake_realtime_server import FakeRealtimeServer, wait_until


def test_build_openai_ws():
    settings = Settings(openai_api_key="sk", provider="openai")
    url, headers = build_ws_url_headers(settings)
    assert url == "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview"
    assert headers == {
        "Authorization": "Bearer sk",
        "OpenAI-Beta": "realtime=v1",
    }


def test_build_azure_ws():
    settings = Settings(
        provider="azure",
        azure_openai_api_key="key",
        azure_openai_endpoint="https://example.openai.azure.com",
        azure_openai_api_version="2024-10-01-preview",
        azure_openai_deployment="realtime",
    )
    url, headers = build_ws_url_headers(settings)
    assert url == (
        "wss://example.openai.azure.com/openai/realtime"
        "?api-version=2024-10-01-preview&deployment=realtime"
    )
    assert headers == {"api-key": "key"}


def test_azure_requires_endpoint():
    with pytest.raises(TransportError):
        build_ws_url_headers(Settings(provider="azure", azure_openai_endpoint=None))


def test_connect_sends_session_update_and_dispatches_in_order():
    async def main():
        server = FakeRealtimeServer(
            [
                {"type": "session.created"},
                {"type": "response.created", "response": {"id": "r1"}},
                {"type": "response.done", "response": {"id": "r1"}},
            ]
        )
        received: list[str] = []

        async def on_event(event):
            received.append(event["type"])

        client = RealtimeClient(
            "ws://fake",
            {"Authorization": "Bearer sk"},
            on_event,
            session_config={"voice": "alloy"},
            ping_interval=None,
            connector=server.connect,
        )
        await client.connect()
        assert client.state is ConnectionState.CONNECTED
        await wait_until(lambda: len(received) == 3)
        await client.close()

        assert received == ["session.created", "response.created", "response.done"]
        assert server.received[0] == {"type": "session.update", "session": {"voice": "alloy"}}
        assert server.connect_kwargs[0]["additional_headers"] == {"Authorization": "Bearer sk"}
        assert client.state is ConnectionState.DISCONNECTED

    asyncio.run(main())


def test_audio_is_base64_encoded_on_the_wire():
    async def main():
        server = FakeRealtimeServer()

        async def on_event(event):
            return None

        client = RealtimeClient(
            "ws://fake", {}, on_event, ping_interval=None, connector=server.connect
        )
        client.append_audio(b"dropped while disconnected")
        await client.connect()
        client.append_audio(b"\x01\x02\x03\x04")
        await wait_until(lambda: len(server.received) == 1)
        await client.close()

        assert server.received == [
            {
                "type": "input_audio_buffer.append",
                "audio": base64.b64encode(b"\x01\x02\x03\x04").decode("ascii"),
            }
        ]

    asyncio.run(main())


def test_full_audio_queue_counts_dropped_frames():
    async def main():
        server = FakeRealtimeServer()

        async def on_event(event):
            return None

        client = RealtimeClient(
            "ws://fake", {}, on_event, ping_interval=None, connector=server.connect
        )
        await client.connect()
        before = audio_frames_dropped_total.value
        for _ in range(70):
            client.append_audio(b"\x00\x00")
        assert audio_frames_dropped_total.value == before + 6
        await client.close()

    asyncio.run(main())


def test_send_json_requires_connection():
    async def main():
        async def on_event(event):
            return None

        client = RealtimeClient("ws://fake", {}, on_event)
        with pytest.raises(TransportError):
            await client.send_json({"type": "response.create"})
        await client.close()
        await client.close()

    asyncio.run(main())


def test_server_hang_up_notifies_on_close(caplog):
    async def main():
        server = FakeRealtimeServer([{"type": "session.created"}])
        closed = asyncio.Event()

        async def on_event(event):
            return None

        async def on_close():
            closed.set()

        client = RealtimeClient(
            "ws://fake",
            {},
            on_event,
            on_close=on_close,
            ping_interval=None,
            connector=server.connect,
        )
        await client.connect()
        with pytest.raises(InvalidState):
            await client.connect()

        caplog.set_level(logging.WARNING)
        server.connection.hang_up()
        await asyncio.wait_for(closed.wait(), timeout=1)
        assert client.state is ConnectionState.DISCONNECTED
        assert any(getattr(rec, "error_category", None) == "network" for rec in caplog.records)
        with pytest.raises(TransportError):
            await client.send_json({"type": "response.create"})
        await client.close()

    asyncio.run(main())


def test_explicit_close_does_not_call_on_close():
    async def main():
        server = FakeRealtimeServer()
        calls: list[str] = []

        async def on_event(event):
            return None

        async def on_close():
            calls.append("closed")

        client = RealtimeClient(
            "ws://fake",
            {},
            on_event,
            on_close=on_close,
            ping_interval=None,
            connector=server.connect,
        )
        await client.connect()
        await client.close()
        assert calls == []
        assert server.connection.closed

    asyncio.run(main())


def test_close_during_handshake_fails_the_pending_connect():
    async def main():
        server = FakeRealtimeServer(handshake_delay=0.05)
        calls: list[str] = []

        async def on_event(event):
            return None

        async def on_close():
            calls.append("closed")

        client = RealtimeClient(
            "ws://fake",
            {},
            on_event,
            on_close=on_close,
            ping_interval=None,
            connector=server.connect,
        )
        connecting = asyncio.create_task(client.connect())
        await wait_until(lambda: client.state is ConnectionState.CONNECTING)
        await client.close()

        with pytest.raises(InvalidState):
            await connecting
        assert client.state is ConnectionState.DISCONNECTED
        assert server.connections == []
        assert calls == []

        server.handshake_delay = 0.0
        await client.connect()
        assert client.is_connected
        await client.close()

    asyncio.run(main())


def test_failed_connect_raises_transport_error():
    async def main():
        server = FakeRealtimeServer(fail=OSError("connection refused"))

        async def on_event(event):
            return None

        client = RealtimeClient("ws://fake", {}, on_event, connector=server.connect)
        with pytest.raises(TransportError, match="connection refused"):
            await client.connect()
        assert client.state is ConnectionState.DISCONNECTED

    asyncio.run(main())


def test_update_session_merges_and_pushes():
    async def main():
        server = FakeRealtimeServer()

        async def on_event(event):
            return None

        client = RealtimeClient(
            "ws://fake",
            {},
            on_event,
            session_config={"voice": "alloy", "turn_detection": {"type": "server_vad"}},
            ping_interval=None,
            connector=server.connect,
        )
        await client.update_session(voice="verse")
        assert server.received == []
        await client.connect()
        await client.update_session(turn_detection=None)
        await client.close()

        assert server.received[-1] == {
            "type": "session.update",
            "session": {"voice": "verse", "turn_detection": None},
        }

    asyncio.run(main())
