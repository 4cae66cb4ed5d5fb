"""
Packet persistence contract.

This module defines the boundary to the persistence collaborator plus an
in-memory implementation used by the HTTP app by default and by tests.

Key invariants:
- fetch_frames() returns exactly the frames of one stream whose
  sample_index lies in [start, end] inclusive, ascending by sample_index.
- Streams are keyed by (ssrc, call_id, channel_id); at most one stream
  record exists per key.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from audio.frames import CompressedFrame


class StorageError(Exception):
    """Raised by PacketStore implementations on lookup/write failure."""


@dataclass(frozen=True)
class StreamRecord:
    """
    Persisted identity of one logical stream.

    sequence_offset / sample_offset are taken from the first observed
    packet and let readers normalize timelines if needed.
    """
    stream_id: str
    ssrc: int
    call_id: str
    channel_id: str
    sequence_offset: int
    sample_offset: int
    created_at: float = field(default_factory=time.time)


class PacketStore(ABC):
    """
    Abstract persistence collaborator.

    Implementations may block (network/database); callers must not hold
    locks that other streams need while awaiting these methods.
    """

    @abstractmethod
    async def find_stream(self, ssrc: int, call_id: str, channel_id: str) -> str | None:
        """Return the stream id for the key, or None if none exists."""
        raise NotImplementedError

    @abstractmethod
    async def create_stream(self, record: StreamRecord) -> None:
        """Persist a new stream record."""
        raise NotImplementedError

    @abstractmethod
    async def save_frame(self, stream_id: str, frame: CompressedFrame) -> None:
        """Persist one received frame."""
        raise NotImplementedError

    @abstractmethod
    async def fetch_frames(
        self,
        stream_id: str,
        start_sample: int,
        end_sample: int,
    ) -> list[CompressedFrame]:
        """
        Return persisted frames with start <= sample_index <= end,
        ascending by sample_index.
        """
        raise NotImplementedError


class InMemoryPacketStore(PacketStore):
    """
    Process-local PacketStore.

    Writes for one stream keep arrival order; fetch sorts by sample_index
    (stable, so duplicate indices keep arrival order).
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._streams: dict[str, StreamRecord] = {}
        self._keys: dict[tuple[int, str, str], str] = {}
        self._frames: dict[str, list[CompressedFrame]] = {}

    async def find_stream(self, ssrc: int, call_id: str, channel_id: str) -> str | None:
        async with self._lock:
            return self._keys.get((ssrc, call_id, channel_id))

    async def create_stream(self, record: StreamRecord) -> None:
        key = (record.ssrc, record.call_id, record.channel_id)
        async with self._lock:
            if record.stream_id in self._streams:
                raise StorageError(f"stream already exists: {record.stream_id}")
            if key in self._keys:
                raise StorageError(f"stream key already mapped: {key}")
            self._streams[record.stream_id] = record
            self._keys[key] = record.stream_id
            self._frames[record.stream_id] = []

    async def save_frame(self, stream_id: str, frame: CompressedFrame) -> None:
        async with self._lock:
            frames = self._frames.get(stream_id)
            if frames is None:
                raise StorageError(f"unknown stream: {stream_id}")
            frames.append(frame)

    async def fetch_frames(
        self,
        stream_id: str,
        start_sample: int,
        end_sample: int,
    ) -> list[CompressedFrame]:
        async with self._lock:
            frames = list(self._frames.get(stream_id, ()))

        selected = [f for f in frames if start_sample <= f.sample_index <= end_sample]
        selected.sort(key=lambda f: f.sample_index)
        return selected

    # ------------------------------------------------------------------
    # Introspection helpers
    # ------------------------------------------------------------------

    def get_record(self, stream_id: str) -> StreamRecord | None:
        return self._streams.get(stream_id)

    def frame_count(self, stream_id: str) -> int:
        return len(self._frames.get(stream_id, ()))
