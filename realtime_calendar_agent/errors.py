from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Classification for error logging."""

    NETWORK = "network"
    PROTOCOL = "protocol"
    AUDIO = "audio"
    API = "api"
    TOOL = "tool"


class AgentError(Exception):
    """Base class for errors raised by the agent."""

    category: ErrorCategory = ErrorCategory.PROTOCOL


class DeviceUnavailable(AgentError):
    """A microphone or speaker could not be acquired."""

    category = ErrorCategory.AUDIO


class InvalidState(AgentError):
    """An operation was called in a state that does not allow it."""


class DuplicateTool(AgentError):
    """A tool with the same name is already registered."""

    category = ErrorCategory.TOOL


class UnknownTool(AgentError):
    """The model asked for a tool that was never registered."""

    category = ErrorCategory.TOOL


class AuthMissing(AgentError):
    """No bearer token is available for the calendar service."""

    category = ErrorCategory.API


class UpstreamRequestFailed(AgentError):
    """The calendar service answered with a non-2xx status."""

    category = ErrorCategory.API

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransportError(AgentError):
    """The realtime channel failed or is not connected."""

    category = ErrorCategory.NETWORK
