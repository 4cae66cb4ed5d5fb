"""
Metrics and timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events through the caller's EventLogger
- Never aggregate: one metric = one log event

Design notes:
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
- Prefer the `timed()` context manager to avoid leaked timers
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import EventLogger


class Timer:
    """
    A single monotonic timer bound to one logger.

    stop() emits exactly one METRIC_TIMER event; later calls return the
    first measured value without emitting again.
    """

    def __init__(self, name: str, *, log: EventLogger) -> None:
        self._name = name
        self._log = log
        self._start_ns = time.monotonic_ns()
        self._duration_ms: int | None = None

    @property
    def duration_ms(self) -> int | None:
        return self._duration_ms

    def stop(self, *, details: dict[str, Any] | None = None) -> int:
        if self._duration_ms is not None:
            return self._duration_ms

        self._duration_ms = (time.monotonic_ns() - self._start_ns) // 1_000_000
        self._log.info(
            "METRIC_TIMER",
            metric=self._name,
            value_ms=self._duration_ms,
            details=details or {},
        )
        return self._duration_ms


@contextmanager
def timed(
    name: str,
    *,
    log: EventLogger,
    details: dict[str, Any] | None = None,
) -> Iterator[Timer]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Timer is ALWAYS stopped (no leaks)
    - Metric is emitted exactly once
    - Exceptions inside the block do NOT suppress timing

    Usage:
        with timed("container_generation", log=self._log):
            blob = await build()
    """
    timer = Timer(name, log=log)
    try:
        yield timer
    finally:
        timer.stop(details=details)
