"""
Stage timing for pipeline runs.

A Stopwatch is created per run and its durations are returned with the
result, so nothing about timing is held in module state.
"""

import time
from contextlib import contextmanager
from typing import Iterator


class Stopwatch:
    """Accumulates elapsed milliseconds per named stage."""

    def __init__(self):
        self.durations_ms: dict[str, float] = {}

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            self.durations_ms[name] = self.durations_ms.get(name, 0.0) + elapsed_ms

    @property
    def total_ms(self) -> float:
        return sum(self.durations_ms.values())
