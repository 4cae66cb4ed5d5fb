"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging

Components never log through module state: each one receives an
EventLogger (a structlog bound logger, usually a bound child of the
process logger) and writes through it. Every event carries ts_ms, level
and event_type, followed by the bound context and the call-site fields.
"""

from __future__ import annotations

import sys
import time
from typing import Any, Callable, Mapping

import structlog
from structlog.typing import EventDict, FilteringBoundLogger, Processor, WrappedLogger

EventLogger = FilteringBoundLogger
EventSink = Callable[[Mapping[str, Any]], None]


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print


class _LineLogger:
    """structlog output stage: one rendered line per event through _print."""

    def msg(self, line: str) -> None:
        # Resolved at call time so a patched _print is honored
        _print(line)

    debug = info = warning = error = msg


class _SinkLogger:
    """structlog output stage: the finished event dict goes to a callable."""

    def __init__(self, sink: EventSink) -> None:
        self._sink = sink

    def msg(self, **event: Any) -> None:
        self._sink(event)

    debug = info = warning = error = msg


# ------------------------------------------------------------------
# Processors
# ------------------------------------------------------------------

LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}


def _add_header(_: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    header = {
        "ts_ms": int(time.time() * 1000),
        "level": method_name.upper(),
        "event_type": event_dict.pop("event"),
    }
    return {**header, **event_dict}


def _pass_dict(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    return event_dict


def make_logger(
    *,
    sink: EventSink | None = None,
    min_level: str = "INFO",
    json_output: bool = True,
    **context: Any,
) -> EventLogger:
    """
    Build a per-process structured logger.

    sink:
        Receives each finished event dict instead of stdout. Used by
        tests and in-process consumers.
    json_output:
        JSONL when true, key=value lines otherwise. Ignored with a sink.

    Raises:
        ValueError for an unknown min_level.
    """
    level = min_level.upper()
    if level not in LEVELS:
        raise ValueError(f"Unknown log level: {min_level}")

    processors: list[Processor] = [_add_header]
    logger: object
    if sink is not None:
        processors.append(_pass_dict)
        logger = _SinkLogger(sink)
    elif json_output:
        processors.append(
            structlog.processors.JSONRenderer(ensure_ascii=False, separators=(",", ":"))
        )
        logger = _LineLogger()
    else:
        processors.append(
            structlog.processors.KeyValueRenderer(key_order=["ts_ms", "level", "event_type"])
        )
        logger = _LineLogger()

    log: EventLogger = structlog.wrap_logger(
        logger,
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(LEVELS[level]),
        context_class=dict,
        cache_logger_on_first_use=False,
    )
    return log.bind(**context)
