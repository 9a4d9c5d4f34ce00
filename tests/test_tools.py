import asyncio
import json

import pytest
from pydantic import BaseModel

from realtime_calendar_agent.errors import DuplicateTool, UnknownTool
from realtime_calendar_agent.handlers.builtin import set_memory_tool
from realtime_calendar_agent.handlers.tools import Tool, ToolRegistry, handle_tool_call
from realtime_calendar_agent.metrics import tool_calls_total, tool_failures_total
from realtime_calendar_agent.state.conversation import FunctionCall
from realtime_calendar_agent.state.memory import MemoryStore


class RecordingClient:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send_json(self, payload: dict) -> None:
        self.sent.append(payload)


class EchoArgs(BaseModel):
    text: str
    times: int = 1


def _echo_tool() -> Tool:
    async def echo(args: EchoArgs) -> dict:
        return {"ok": True, "echo": args.text * args.times}

    return Tool(
        name="echo",
        description="Repeat text",
        parameters={"type": "object", "properties": {"text": {"type": "string"}}},
        func=echo,
        args_model=EchoArgs,
    )


def test_register_rejects_duplicate_names():
    registry = ToolRegistry()
    registry.register(_echo_tool())
    with pytest.raises(DuplicateTool, match='Tool "echo" already added'):
        registry.register(_echo_tool())
    assert registry.names() == ["echo"]
    assert registry.specs()[0] == {
        "type": "function",
        "name": "echo",
        "description": "Repeat text",
        "parameters": {"type": "object", "properties": {"text": {"type": "string"}}},
    }


def test_require_unknown_tool():
    with pytest.raises(UnknownTool, match='Tool "missing" has not been added'):
        ToolRegistry().require("missing")


def test_dispatch_validates_arguments():
    async def main():
        registry = ToolRegistry()
        registry.register(_echo_tool())
        assert await registry.dispatch("echo", '{"text": "ab", "times": 2}') == {
            "ok": True,
            "echo": "abab",
        }
        bad_json = await registry.dispatch("echo", "{not json")
        assert bad_json["ok"] is False
        assert "Invalid arguments for echo" in bad_json["error"]
        missing = await registry.dispatch("echo", "{}")
        assert missing["ok"] is False
        not_object = await registry.dispatch("echo", "[1, 2]")
        assert not_object["ok"] is False

    asyncio.run(main())


def test_dispatch_turns_failures_into_results():
    async def main():
        def boom() -> None:
            raise RuntimeError("calendar exploded")

        registry = ToolRegistry()
        registry.register(Tool("boom", "fails", {"type": "object"}, boom))
        registry.register(Tool("plain", "returns text", {"type": "object"}, lambda: "noon"))

        calls, failures = tool_calls_total.value, tool_failures_total.value
        assert await registry.dispatch("boom", "") == {"ok": False, "error": "calendar exploded"}
        assert await registry.dispatch("nope", "{}") == {
            "ok": False,
            "error": 'Tool "nope" has not been added',
        }
        assert await registry.dispatch("plain", None) == {"ok": True, "result": "noon"}
        assert tool_calls_total.value == calls + 3
        assert tool_failures_total.value == failures + 2

    asyncio.run(main())


def test_set_memory_call_sends_output_then_response_create():
    async def main():
        memory = MemoryStore()
        registry = ToolRegistry()
        registry.register(set_memory_tool(memory))
        client = RecordingClient()

        call = FunctionCall(
            name="set_memory",
            call_id="call_1",
            arguments='{"key": "favorite_color", "value": "blue"}',
        )
        result = await handle_tool_call(call, client, registry)

        assert result == {"ok": True}
        assert memory.get_all() == {"favorite_color": "blue"}
        output, follow_up = client.sent
        assert output["type"] == "conversation.item.create"
        assert output["item"]["type"] == "function_call_output"
        assert output["item"]["call_id"] == "call_1"
        assert json.loads(output["item"]["output"]) == {"ok": True}
        assert follow_up == {"type": "response.create"}

    asyncio.run(main())


def test_set_memory_accepts_non_string_values():
    async def main():
        memory = MemoryStore()
        registry = ToolRegistry()
        registry.register(set_memory_tool(memory))

        assert await registry.dispatch("set_memory", '{"key": "age", "value": 30}') == {"ok": True}
        assert await registry.dispatch("set_memory", {"key": "vegan", "value": True}) == {
            "ok": True
        }
        assert memory.get_all() == {"age": "30", "vegan": "true"}

        result = await registry.dispatch("set_memory", {"key": "age"})
        assert result["ok"] is False
        assert memory.get("age") == "30"

    asyncio.run(main())


def test_memory_last_write_wins():
    memory = MemoryStore()
    memory.set("favorite_color", "blue")
    memory.set("favorite_color", "green")
    assert memory.get("favorite_color") == "green"
    assert len(memory) == 1
    memory.clear()
    assert memory.get_all() == {}
