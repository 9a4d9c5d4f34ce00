"""Realtime calendar voice agent.

This package wires a microphone, a speaker and the OpenAI Realtime API into a
voice agent that can manage a Google Calendar and keep short-lived notes
about the user. Modules do not perform network or audio I/O on import.
"""

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
