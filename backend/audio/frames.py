"""
Audio frame primitives.

Pure data containers only.
No queues, no timing logic, no codec work.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

import numpy as np
import numpy.typing as npt

from constants import (
    PCM_FRAME_SAMPLES,
    SAMPLE_INDEX_MODULUS,
    SEQUENCE_MODULUS,
)


@dataclass(frozen=True)
class CompressedFrame:
    """
    One encoded (Opus) audio frame as received from the transport.

    sequence_number:
        Wrapping 16-bit counter from the sender. Used as a monotonic hint
        and for diagnostics only.

    sample_index:
        Position of the frame on the sender's 48kHz timeline. Wraps at
        32 bits. Drives gap detection in the container encoder.

    payload:
        Opaque compressed bytes. Never decoded by this pipeline.

    arrival_time:
        Wall-clock capture time (seconds since epoch).
    """
    sequence_number: int
    sample_index: int
    payload: bytes
    arrival_time: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not 0 <= self.sequence_number < SEQUENCE_MODULUS:
            raise ValueError(f"sequence_number out of range: {self.sequence_number}")
        if not 0 <= self.sample_index < SAMPLE_INDEX_MODULUS:
            raise ValueError(f"sample_index out of range: {self.sample_index}")


@dataclass(frozen=True)
class InboundPacket:
    """
    Transport-level packet, already demultiplexed by synchronization source.
    """
    ssrc: int
    sequence_number: int
    timestamp: int
    payload: bytes

    def to_frame(self, arrival_time: float | None = None) -> CompressedFrame:
        return CompressedFrame(
            sequence_number=self.sequence_number,
            sample_index=self.timestamp,
            payload=self.payload,
            arrival_time=time.time() if arrival_time is None else arrival_time,
        )


@dataclass(frozen=True, eq=False)
class PCMFrame:
    """
    Interleaved stereo PCM16 audio ready for the frame compressor.

    samples:
        int16 array, L/R interleaved. Exactly PCM_FRAME_SAMPLES long for
        every frame except the final emission of a playback run, which may
        be shorter and marks completion.
    """
    samples: npt.NDArray[np.int16]

    @property
    def is_full(self) -> bool:
        return len(self.samples) == PCM_FRAME_SAMPLES

    def padded(self) -> PCMFrame:
        """Return a full-length copy, zero-filled at the tail."""
        if self.is_full:
            return self
        out = np.zeros(PCM_FRAME_SAMPLES, dtype=np.int16)
        out[: len(self.samples)] = self.samples
        return PCMFrame(samples=out)

    def __len__(self) -> int:
        return len(self.samples)
