"""Built-in tools: agent memory and calendar management.

Each tool has its own argument model; the registry validates the model's
JSON arguments into it before the handler runs. Calendar handlers check for a
bearer token before anything else and report every failure as data.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..auth import TokenProvider
from ..calendar_api import CalendarClient, date_only, event_start, normalize_event, parse_timestamp
from ..errors import AuthMissing, ErrorCategory, UpstreamRequestFailed
from ..state.memory import MemoryStore
from .tools import Tool, failure

logger = logging.getLogger(__name__)

AUTH_MISSING_ERROR = "No authentication token found"
PRIORITY_EMOJI = {"high": "🔴", "medium": "🟡", "low": "🟢"}
NOT_COMPLETED = "⬜"

Priority = Literal["high", "medium", "low"]

_CALENDAR_ERRORS = (UpstreamRequestFailed, httpx.HTTPError, ValueError)


class SetMemoryArgs(BaseModel):
    key: str
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)


class CreateCalendarEventArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="eventName")
    description: str = Field(alias="eventDescription")
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")


class CheckCalendarArgs(BaseModel):
    start_time: str
    end_time: str


class UpdateCalendarEventArgs(BaseModel):
    event_id: str
    summary: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    description: str | None = None


class DeleteCalendarEventArgs(BaseModel):
    event_id: str


class CreateTaskEventArgs(BaseModel):
    task_name: str
    due_date: str
    description: str = ""
    priority: Priority = "medium"


def set_memory_tool(memory: MemoryStore) -> Tool:
    def set_memory(args: SetMemoryArgs) -> dict[str, Any]:
        memory.set(args.key, args.value)
        return {"ok": True}

    return Tool(
        name="set_memory",
        description="Saves important data about the user into memory.",
        parameters={
            "type": "object",
            "properties": {
                "key": {
                    "type": "string",
                    "description": (
                        "The key of the memory value. Always use lowercase and "
                        "underscores, no other characters."
                    ),
                },
                "value": {
                    "type": "string",
                    "description": "Value can be anything represented as a string",
                },
            },
            "required": ["key", "value"],
        },
        func=set_memory,
        args_model=SetMemoryArgs,
    )


def task_description(description: str, priority: Priority) -> str:
    return (
        f"{description}\n\n"
        f"Priority: {PRIORITY_EMOJI[priority]} {priority}\n"
        f"Status: {NOT_COMPLETED} Not completed"
    )


class CalendarTools:
    """Calendar tool handlers sharing one client and token source."""

    def __init__(self, calendar: CalendarClient, tokens: TokenProvider) -> None:
        self.calendar = calendar
        self.tokens = tokens

    def _token(self) -> str:
        token = self.tokens.get_token()
        if not token:
            raise AuthMissing(AUTH_MISSING_ERROR)
        return token

    @staticmethod
    def _log_failure(tool: str, exc: Exception) -> None:
        logger.warning(
            "calendar_tool_failed",
            extra={
                "event_type": "calendar_tool_failed",
                "tool": tool,
                "error": str(exc),
                "error_category": ErrorCategory.API.value,
            },
        )

    async def create_calendar_event(self, args: CreateCalendarEventArgs) -> dict[str, Any]:
        try:
            token = self._token()
        except AuthMissing:
            return failure(AUTH_MISSING_ERROR)
        try:
            body = {
                "summary": args.name,
                "description": args.description,
                "start": self.calendar.time_block(args.start_time),
                "end": self.calendar.time_block(args.end_time),
            }
            created = await self.calendar.create_event(token, body)
        except _CALENDAR_ERRORS as exc:
            self._log_failure("create_calendar_event", exc)
            return failure("Failed to create calendar event")
        return {"ok": True, "eventId": created.get("id")}

    async def check_calendar(self, args: CheckCalendarArgs) -> dict[str, Any]:
        try:
            token = self._token()
        except AuthMissing:
            return failure(AUTH_MISSING_ERROR)
        tz = self.calendar.tz
        try:
            window_start = parse_timestamp(args.start_time, tz)
            window_end = parse_timestamp(args.end_time, tz)
            items = await self.calendar.list_events(token, args.start_time, args.end_time)
        except _CALENDAR_ERRORS as exc:
            self._log_failure("check_calendar", exc)
            return failure("Failed to check calendar events")

        # The API returns anything overlapping the window; keep events that start in it.
        in_window = []
        for event in items:
            start = event_start(event, tz)
            if start is not None and window_start <= start <= window_end:
                in_window.append((start, event))
        in_window.sort(key=lambda pair: pair[0])
        logger.debug("calendar_events_found", extra={"count": len(in_window)})
        return {"ok": True, "events": [normalize_event(event) for _, event in in_window]}

    async def update_calendar_event(self, args: UpdateCalendarEventArgs) -> dict[str, Any]:
        try:
            token = self._token()
        except AuthMissing:
            return failure(AUTH_MISSING_ERROR)
        try:
            current = await self.calendar.get_event(token, args.event_id)
            merged = dict(current)
            if args.summary is not None:
                merged["summary"] = args.summary
            if args.description is not None:
                merged["description"] = args.description
            if args.start_time is not None:
                merged["start"] = self.calendar.time_block(args.start_time)
            if args.end_time is not None:
                merged["end"] = self.calendar.time_block(args.end_time)
            updated = await self.calendar.update_event(token, args.event_id, merged)
        except _CALENDAR_ERRORS as exc:
            self._log_failure("update_calendar_event", exc)
            return failure("Failed to update calendar event")
        return {"ok": True, "updated_event": normalize_event(updated)}

    async def delete_calendar_event(self, args: DeleteCalendarEventArgs) -> dict[str, Any]:
        try:
            token = self._token()
        except AuthMissing:
            return failure(AUTH_MISSING_ERROR)
        try:
            await self.calendar.delete_event(token, args.event_id)
        except _CALENDAR_ERRORS as exc:
            self._log_failure("delete_calendar_event", exc)
            return failure("Failed to delete calendar event")
        return {
            "ok": True,
            "status": "success",
            "message": f"Event with ID {args.event_id} has been deleted",
        }

    async def create_task_event(self, args: CreateTaskEventArgs) -> dict[str, Any]:
        try:
            token = self._token()
        except AuthMissing:
            return failure(AUTH_MISSING_ERROR)
        try:
            day = self.calendar.date_block(args.due_date)
            body = {
                "summary": f"{PRIORITY_EMOJI[args.priority]} Task: {args.task_name}",
                "description": task_description(args.description, args.priority),
                "start": day,
                "end": dict(day),
                "transparency": "transparent",
                "extendedProperties": {
                    "private": {
                        "type": "task",
                        "priority": args.priority,
                        "status": "not_completed",
                    }
                },
            }
            created = await self.calendar.create_event(token, body)
        except _CALENDAR_ERRORS as exc:
            self._log_failure("create_task_event", exc)
            return failure("Failed to create task event")
        start = created.get("start") or {}
        return {
            "ok": True,
            "task": {
                "id": created.get("id"),
                "summary": created.get("summary"),
                "due_date": start.get("date") or date_only(args.due_date),
                "description": created.get("description"),
                "priority": args.priority,
            },
        }

    def tools(self) -> list[Tool]:
        return [
            Tool(
                name="create_calendar_event",
                description="Creates a new event in Google Calendar",
                parameters={
                    "type": "object",
                    "properties": {
                        "eventName": {
                            "type": "string",
                            "description": "Name/title of the calendar event",
                        },
                        "eventDescription": {
                            "type": "string",
                            "description": "Description of the calendar event",
                        },
                        "startTime": {
                            "type": "string",
                            "description": (
                                "Start time of event in ISO format (e.g. 2024-03-20T15:00:00)"
                            ),
                        },
                        "endTime": {
                            "type": "string",
                            "description": (
                                "End time of event in ISO format (e.g. 2024-03-20T16:00:00)"
                            ),
                        },
                    },
                    "required": ["eventName", "eventDescription", "startTime", "endTime"],
                },
                func=self.create_calendar_event,
                args_model=CreateCalendarEventArgs,
            ),
            Tool(
                name="check_calendar",
                description="Check Google Calendar for events within a specified time range",
                parameters={
                    "type": "object",
                    "properties": {
                        "start_time": {
                            "type": "string",
                            "description": (
                                'Start time in ISO format (e.g., "2023-04-20T09:00:00-07:00")'
                            ),
                        },
                        "end_time": {
                            "type": "string",
                            "description": (
                                'End time in ISO format (e.g., "2023-04-20T17:00:00-07:00")'
                            ),
                        },
                    },
                    "required": ["start_time", "end_time"],
                },
                func=self.check_calendar,
                args_model=CheckCalendarArgs,
            ),
            Tool(
                name="update_calendar_event",
                description="Update an existing Google Calendar event",
                parameters={
                    "type": "object",
                    "properties": {
                        "event_id": {"type": "string", "description": "ID of the event to update"},
                        "summary": {"type": "string", "description": "New event title"},
                        "start_time": {
                            "type": "string",
                            "description": "New start time in ISO format",
                        },
                        "end_time": {"type": "string", "description": "New end time in ISO format"},
                        "description": {"type": "string", "description": "New event description"},
                    },
                    "required": ["event_id"],
                },
                func=self.update_calendar_event,
                args_model=UpdateCalendarEventArgs,
            ),
            Tool(
                name="delete_calendar_event",
                description="Delete a Google Calendar event",
                parameters={
                    "type": "object",
                    "properties": {
                        "event_id": {"type": "string", "description": "ID of the event to delete"},
                    },
                    "required": ["event_id"],
                },
                func=self.delete_calendar_event,
                args_model=DeleteCalendarEventArgs,
            ),
            Tool(
                name="create_task_event",
                description="Creates a new task event in Google Calendar",
                parameters={
                    "type": "object",
                    "properties": {
                        "task_name": {"type": "string", "description": "Name/title of the task"},
                        "due_date": {
                            "type": "string",
                            "description": "Due date for the task in ISO format (e.g. 2024-03-20)",
                        },
                        "description": {
                            "type": "string",
                            "description": "Description or details of the task",
                        },
                        "priority": {
                            "type": "string",
                            "description": "Priority level (high, medium, low)",
                            "enum": ["high", "medium", "low"],
                        },
                    },
                    "required": ["task_name", "due_date"],
                },
                func=self.create_task_event,
                args_model=CreateTaskEventArgs,
            ),
        ]


def builtin_tools(
    memory: MemoryStore, calendar: CalendarClient, tokens: TokenProvider
) -> list[Tool]:
    return [set_memory_tool(memory), *CalendarTools(calendar, tokens).tools()]
