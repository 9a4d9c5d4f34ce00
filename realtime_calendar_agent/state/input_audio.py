"""Microphone audio sent upstream, addressed by byte offset from session start."""

from __future__ import annotations


class InputAudioBuffer:
    """Growing byte timeline whose oldest bytes may be dropped.

    Offsets stay absolute after :meth:`trim`, so speech segments the server
    reports in milliseconds since the session began can still be sliced.
    Slicing before the retained window yields only the retained part.
    """

    def __init__(self) -> None:
        self._data = bytearray()
        self._base = 0

    def __len__(self) -> int:
        return len(self._data)

    @property
    def start(self) -> int:
        return self._base

    @property
    def end(self) -> int:
        return self._base + len(self._data)

    def extend(self, data: bytes) -> None:
        self._data.extend(data)

    def __getitem__(self, key: slice) -> bytes:
        if not isinstance(key, slice) or key.step not in (None, 1):
            raise TypeError("only contiguous slices are supported")
        start = self._base if key.start is None else max(key.start, self._base)
        stop = self.end if key.stop is None else min(key.stop, self.end)
        if stop <= start:
            return b""
        return bytes(self._data[start - self._base : stop - self._base])

    def trim(self, before: int) -> int:
        """Drop bytes before absolute offset ``before`` and return how many went."""
        drop = min(max(before - self._base, 0), len(self._data))
        if drop:
            del self._data[:drop]
            self._base += drop
        return drop

    def take(self) -> bytes:
        """Return the retained bytes and drop them; later offsets continue on."""
        data = bytes(self._data)
        self.trim(self.end)
        return data

    def clear(self) -> None:
        self._data.clear()
        self._base = 0
