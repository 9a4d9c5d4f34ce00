"""In-process counters, gauges and latency timers."""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager


class Counter:
    def __init__(self) -> None:
        self.value = 0

    def inc(self, n: int = 1) -> None:
        self.value += n


class Gauge:
    def __init__(self) -> None:
        self.value = 0

    def set(self, v: int) -> None:
        self.value = v


class Elapsed:
    """Duration of one timed block, filled in when the block exits."""

    def __init__(self) -> None:
        self.ms: float | None = None


class Timer:
    """Latency samples in milliseconds.

    Each ``time()`` block keeps its own start, so overlapping tool calls can
    share one timer.
    """

    def __init__(self) -> None:
        self.last_ms: float | None = None
        self.count = 0
        self.total_ms = 0.0

    def observe(self, ms: float) -> None:
        self.last_ms = ms
        self.count += 1
        self.total_ms += ms

    @property
    def mean_ms(self) -> float | None:
        return self.total_ms / self.count if self.count else None

    @contextmanager
    def time(self) -> Iterator[Elapsed]:
        elapsed = Elapsed()
        start = time.perf_counter()
        try:
            yield elapsed
        finally:
            elapsed.ms = (time.perf_counter() - start) * 1000
            self.observe(elapsed.ms)


tool_calls_total = Counter()
tool_failures_total = Counter()
interruptions_total = Counter()
audio_frames_dropped_total = Counter()
audio_input_queue_depth = Gauge()
tool_latency_ms = Timer()
