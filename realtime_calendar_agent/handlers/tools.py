"""Tool registry and dispatch helpers."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from ..errors import DuplicateTool, ErrorCategory, UnknownTool
from ..metrics import tool_calls_total, tool_failures_total, tool_latency_ms

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..state.conversation import FunctionCall
    from ..transport.client import RealtimeClient

logger = logging.getLogger(__name__)


def failure(error: str) -> dict[str, Any]:
    return {"ok": False, "error": error}


@dataclass(frozen=True)
class Tool:
    """Description of an executable tool.

    When ``args_model`` is set the decoded arguments are validated into that
    model and passed to ``func`` as a single object; otherwise they are passed
    as keyword arguments.
    """

    name: str
    description: str
    parameters: dict
    func: Callable[..., Any]
    args_model: type[BaseModel] | None = None

    def parse_arguments(self, arguments: str | dict | None) -> Any:
        if isinstance(arguments, str):
            raw = json.loads(arguments) if arguments.strip() else {}
        else:
            raw = arguments or {}
        if not isinstance(raw, dict):
            raise TypeError("arguments must be a JSON object")
        if self.args_model is None:
            return raw
        return self.args_model.model_validate(raw)

    async def call(self, args: Any) -> Any:
        if self.args_model is None:
            result = self.func(**args)
        else:
            result = self.func(args)
        if inspect.isawaitable(result):
            return await result
        return result

    def spec(self) -> dict:
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class ToolRegistry:
    """In-memory tool registry, keyed by tool name."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise DuplicateTool(f'Tool "{tool.name}" already added')
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownTool(f'Tool "{name}" has not been added')
        return tool

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def specs(self) -> list[dict]:
        """Return tool specs suitable for session advertisement."""
        return [t.spec() for t in self._tools.values()]

    async def dispatch(
        self, name: str, arguments: str | dict | None, call_id: str | None = None
    ) -> dict[str, Any]:
        """Run a tool call and return its result object.

        Every failure (unknown tool, bad arguments, handler exception) comes
        back as ``{"ok": False, "error": ...}`` so the model can explain it.
        """

        tool_calls_total.inc()
        extra = {"event_type": "tool_call", "call_id": call_id, "tool": name}
        try:
            tool = self.require(name)
            args = tool.parse_arguments(arguments)
        except UnknownTool as exc:
            return self._failed(str(exc), extra)
        except (json.JSONDecodeError, ValidationError, TypeError) as exc:
            return self._failed(f"Invalid arguments for {name}: {exc}", extra)

        logger.info("tool_call_start", extra=extra)
        try:
            with tool_latency_ms.time() as elapsed:
                result = await tool.call(args)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # handler boundary: one tool must not end the session
            logger.warning("tool_call_raised", exc_info=True, extra=extra)
            return self._failed(str(exc) or type(exc).__name__, extra)

        if not isinstance(result, dict):
            result = {"ok": True, "result": result}
        if result.get("ok") is False:
            tool_failures_total.inc()
        logger.info("tool_call_done", extra={**extra, "latency_ms": elapsed.ms})
        return result

    @staticmethod
    def _failed(error: str, extra: dict) -> dict[str, Any]:
        tool_failures_total.inc()
        logger.warning(
            "tool_call_failed",
            extra={**extra, "error": error, "error_category": ErrorCategory.TOOL.value},
        )
        return failure(error)


async def handle_tool_call(
    call: FunctionCall, client: RealtimeClient, registry: ToolRegistry
) -> dict[str, Any]:
    """Run ``call`` and send its output back, then ask for a new response."""

    result = await registry.dispatch(call.name, call.arguments, call_id=call.call_id)
    await client.send_json(
        {
            "type": "conversation.item.create",
            "item": {
                "type": "function_call_output",
                "call_id": call.call_id,
                "output": json.dumps(result, ensure_ascii=False),
            },
        }
    )
    await client.send_json({"type": "response.create"})
    return result
