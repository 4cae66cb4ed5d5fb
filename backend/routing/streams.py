"""
Logical stream container and registry.

- LogicalStream is a mutable runtime container, owned by the router.
- StreamRegistry is an explicit arena of streams indexed by id, with a
  secondary (ssrc, call_id, channel_id) index. Streams are added when a
  key is first seen and removed by the call-leave teardown hook; nothing
  is collected implicitly.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from adapters.asr.base import RecognitionSession
from audio.queues import StreamFrameQueue
from container.encoder import GapAwareEncoder

StreamKey = tuple[int, str, str]


@dataclass
class LogicalStream:
    """One continuous audio source (one speaker) within a call."""

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    id: str
    ssrc: int
    call_id: str
    channel_id: str
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Timeline (from the first observed packet)
    # ------------------------------------------------------------------

    sequence_offset: int = 0
    sample_offset: int = 0
    last_sample_index: int = 0  # 0 = no frame processed yet
    last_sequence_number: Optional[int] = None

    # ------------------------------------------------------------------
    # Processing resources (owned by the stream's worker task)
    # ------------------------------------------------------------------

    queue: StreamFrameQueue = field(default_factory=StreamFrameQueue)
    task: Optional[asyncio.Task[None]] = None
    sessions: set[RecognitionSession] = field(default_factory=set)
    encoder: Optional[GapAwareEncoder] = None
    container_sink: Any = None

    frames_processed: int = 0
    finished: bool = False

    @property
    def key(self) -> StreamKey:
        return (self.ssrc, self.call_id, self.channel_id)

    def log_context(self) -> dict[str, Any]:
        """Standard logging context for this stream."""
        return {
            "stream_id": self.id,
            "ssrc": self.ssrc,
            "call_id": self.call_id,
            "channel_id": self.channel_id,
        }


class StreamRegistry:
    """
    Arena of LogicalStreams.

    The map lock is held only for dictionary reads/writes, never across
    an await.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._streams: dict[str, LogicalStream] = {}
        self._by_key: dict[StreamKey, str] = {}

    def lookup(self, key: StreamKey) -> str | None:
        with self._lock:
            return self._by_key.get(key)

    def get(self, stream_id: str) -> LogicalStream | None:
        with self._lock:
            return self._streams.get(stream_id)

    def add(self, stream: LogicalStream) -> None:
        with self._lock:
            if stream.key in self._by_key:
                raise KeyError(f"stream key already registered: {stream.key}")
            self._streams[stream.id] = stream
            self._by_key[stream.key] = stream.id

    def remove(self, stream_id: str) -> LogicalStream | None:
        with self._lock:
            stream = self._streams.pop(stream_id, None)
            if stream is not None:
                self._by_key.pop(stream.key, None)
            return stream

    def by_call(self, call_id: str) -> list[LogicalStream]:
        with self._lock:
            return [s for s in self._streams.values() if s.call_id == call_id]

    def all(self) -> list[LogicalStream]:
        with self._lock:
            return list(self._streams.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)
