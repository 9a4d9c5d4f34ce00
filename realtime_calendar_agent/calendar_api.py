"""Async client for the Google Calendar events REST API."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any
from urllib.parse import quote
from zoneinfo import ZoneInfo

import httpx

from .errors import ErrorCategory, UpstreamRequestFailed

logger = logging.getLogger(__name__)


def parse_timestamp(value: str, tz: ZoneInfo) -> datetime:
    """Parse an ISO-8601 date or date-time; naive values are taken in ``tz``."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def to_rfc3339(value: str, tz: ZoneInfo) -> str:
    """Normalise ``value`` to a UTC RFC 3339 timestamp with milliseconds."""
    utc = parse_timestamp(value, tz).astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def date_only(value: str) -> str:
    """The calendar date part of an ISO date or date-time string."""
    day = value.strip().split("T", 1)[0]
    return date.fromisoformat(day).isoformat()


def event_start(event: dict, tz: ZoneInfo) -> datetime | None:
    start = event.get("start") or {}
    raw = start.get("dateTime") or start.get("date")
    if not raw:
        return None
    return parse_timestamp(raw, tz)


def normalize_event(event: dict) -> dict[str, Any]:
    start = event.get("start") or {}
    end = event.get("end") or {}
    return {
        "id": event.get("id"),
        "summary": event.get("summary"),
        "start": start.get("dateTime") or start.get("date"),
        "end": end.get("dateTime") or end.get("date"),
        "description": event.get("description"),
    }


class CalendarClient:
    """Thin wrapper over the calendar events endpoints.

    One request per call and no retries; non-2xx answers raise
    :class:`UpstreamRequestFailed` for the tool handler to convert.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timezone_name: str = "UTC",
        timeout: float = 30.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timezone_name = timezone_name
        self.tz = ZoneInfo(timezone_name)
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _event_url(self, event_id: str | None = None) -> str:
        url = f"{self.base_url}/events"
        if event_id is not None:
            url = f"{url}/{quote(event_id, safe='')}"
        return url

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        *,
        params: dict[str, str] | None = None,
        json: dict | None = None,
    ) -> dict | None:
        response = await self._http.request(
            method,
            url,
            params=params,
            json=json,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
        )
        if response.is_error:
            logger.warning(
                "calendar_request_failed",
                extra={
                    "event_type": "calendar_request_failed",
                    "method": method,
                    "status_code": response.status_code,
                    "error_category": ErrorCategory.API.value,
                },
            )
            raise UpstreamRequestFailed(
                f"{method} {url} returned {response.status_code}", response.status_code
            )
        if not response.content:
            return None
        return response.json()

    def time_block(self, value: str) -> dict[str, str]:
        return {"dateTime": to_rfc3339(value, self.tz), "timeZone": self.timezone_name}

    def date_block(self, value: str) -> dict[str, str]:
        return {"date": date_only(value), "timeZone": self.timezone_name}

    async def create_event(self, token: str, body: dict) -> dict:
        return await self._request("POST", self._event_url(), token, json=body) or {}

    async def list_events(self, token: str, time_min: str, time_max: str) -> list[dict]:
        params = {
            "timeMin": to_rfc3339(time_min, self.tz),
            "timeMax": to_rfc3339(time_max, self.tz),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        data = await self._request("GET", self._event_url(), token, params=params) or {}
        return list(data.get("items") or [])

    async def get_event(self, token: str, event_id: str) -> dict:
        return await self._request("GET", self._event_url(event_id), token) or {}

    async def update_event(self, token: str, event_id: str, body: dict) -> dict:
        return await self._request("PUT", self._event_url(event_id), token, json=body) or {}

    async def delete_event(self, token: str, event_id: str) -> None:
        await self._request("DELETE", self._event_url(event_id), token)
