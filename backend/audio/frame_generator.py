"""
PCM re-chunking utilities.

Purpose:
- Turn an arbitrarily-chunked PCM byte stream (decoder stdout reads) into
  fixed-size 20ms stereo chunks for sample conversion and compression.

Invariants:
- PCM16 signed, little-endian
- Stereo, interleaved
- 48 kHz
- 20 ms frames
- Bytes per frame = constants.PCM_FRAME_BYTES

Design:
- split_pcm_into_frames() is pure (no IO, no state).
- PCMRechunker carries the remainder between pushes; the remainder is
  handed out once by flush() at end-of-stream, as-is (no padding).
"""

from __future__ import annotations

from constants import (
    CHANNELS,
    FRAME_MS,
    PCM_FRAME_BYTES,
    SAMPLE_RATE_HZ,
    SAMPLE_WIDTH_BYTES,
)


def bytes_per_frame(
    *,
    sample_rate_hz: int = SAMPLE_RATE_HZ,
    frame_duration_ms: int = FRAME_MS,
    channels: int = CHANNELS,
    sample_width_bytes: int = SAMPLE_WIDTH_BYTES,
) -> int:
    """
    Compute the byte size of one frame for the given format.

    Raises:
        ValueError if parameters are invalid.
    """
    if sample_rate_hz <= 0:
        raise ValueError("sample_rate_hz must be > 0")
    if frame_duration_ms <= 0:
        raise ValueError("frame_duration_ms must be > 0")
    if channels <= 0:
        raise ValueError("channels must be > 0")
    if sample_width_bytes <= 0:
        raise ValueError("sample_width_bytes must be > 0")

    samples_per_frame = (sample_rate_hz * frame_duration_ms) // 1000
    size = samples_per_frame * channels * sample_width_bytes
    if size <= 0:
        raise ValueError("bytes_per_frame must be > 0")
    return size


def split_pcm_into_frames(
    pcm_bytes: bytes,
    *,
    frame_bytes: int = PCM_FRAME_BYTES,
) -> tuple[list[bytes], bytes]:
    """
    Split raw PCM16 bytes into fixed-size frames.

    Returns:
        (frames, remainder): every element of frames is exactly
        frame_bytes long; remainder holds the incomplete tail
        (possibly empty).
    """
    if frame_bytes <= 0:
        raise ValueError("frame_bytes must be > 0")

    if not pcm_bytes:
        return [], b""

    whole_frames = len(pcm_bytes) // frame_bytes
    end = whole_frames * frame_bytes

    frames = [
        pcm_bytes[offset : offset + frame_bytes]
        for offset in range(0, end, frame_bytes)
    ]
    return frames, pcm_bytes[end:]


class PCMRechunker:
    """
    Stateful carry buffer around split_pcm_into_frames().

    push() returns zero or more exact-size chunks; flush() returns the
    leftover bytes once (b"" if nothing is left) and resets the carry.
    """

    def __init__(self, *, frame_bytes: int = PCM_FRAME_BYTES) -> None:
        if frame_bytes <= 0:
            raise ValueError("frame_bytes must be > 0")
        self._frame_bytes = frame_bytes
        self._carry = bytearray()

    @property
    def pending(self) -> int:
        """Number of carried bytes not yet emitted."""
        return len(self._carry)

    def push(self, data: bytes) -> list[bytes]:
        if not data:
            return []

        self._carry += data
        frames, remainder = split_pcm_into_frames(
            bytes(self._carry),
            frame_bytes=self._frame_bytes,
        )
        self._carry = bytearray(remainder)
        return frames

    def flush(self) -> bytes:
        tail = bytes(self._carry)
        self._carry.clear()
        return tail
