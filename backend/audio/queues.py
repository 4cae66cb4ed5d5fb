# backend/audio/queues.py
"""
Bounded per-stream frame queues.

Requirements:
- Capacity measured in frames
- Producer side never blocks: a full queue drops the NEWEST frame
- Drops are counted, not raised (backpressure is lossy by design)
- Consumer side awaits; close() always gets through so the consumer
  can finish even when the queue is full
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from audio.frames import CompressedFrame
from constants import FRAME_DURATION_S, STREAM_QUEUE_CAPACITY


@dataclass
class DropCounters:
    """
    Drop counters for observability.
    """
    overflow: int = 0
    after_close: int = 0


class StreamFrameQueue:
    """
    Bounded FIFO of CompressedFrame objects owned by one LogicalStream.

    Single producer (the router's ingestion path), single consumer (the
    stream's worker task).
    """

    def __init__(self, *, capacity: int = STREAM_QUEUE_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self._capacity = capacity
        self._frames: Deque[CompressedFrame] = deque()
        self._closed = False
        self._ready = asyncio.Event()
        self.drops: DropCounters = DropCounters()

    # -------------------------
    # Core queue operations
    # -------------------------

    def offer(self, frame: CompressedFrame) -> bool:
        """
        Enqueue a frame without blocking.

        Returns:
            True if enqueued
            False if dropped (queue full or closed)
        """
        if self._closed:
            self.drops.after_close += 1
            return False

        if len(self._frames) >= self._capacity:
            self.drops.overflow += 1
            return False

        self._frames.append(frame)
        self._ready.set()
        return True

    async def get(self) -> Optional[CompressedFrame]:
        """
        Wait for the oldest frame.

        Returns None once the queue is closed and drained.
        """
        while not self._frames:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()

        return self._frames.popleft()

    def close(self) -> None:
        """
        Stop accepting frames. Frames already queued are still delivered.
        """
        self._closed = True
        self._ready.set()

    def clear(self) -> None:
        """
        Drop all queued frames without counting them as drops.

        Used on cancellation.
        """
        self._frames.clear()

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def is_empty(self) -> bool:
        """Check if the queue is empty."""
        return not self._frames

    def depth_seconds(self) -> float:
        """
        Queue depth in seconds of audio.

        depth_s = num_frames × FRAME_DURATION_S
        """
        return len(self._frames) * FRAME_DURATION_S

    def total_drops(self) -> int:
        """
        Total frames dropped for any reason.
        """
        return self.drops.overflow + self.drops.after_close

    def snapshot(self) -> dict[str, float | int]:
        """
        Lightweight snapshot for logging / metrics.
        """
        return {
            "frames": len(self._frames),
            "capacity": self._capacity,
            "depth_s": self.depth_seconds(),
            "dropped_overflow": self.drops.overflow,
            "dropped_after_close": self.drops.after_close,
            "dropped_total": self.total_drops(),
        }
