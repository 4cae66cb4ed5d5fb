"""
Gap-aware container encoder.

Turns the ordered CompressedFrames of one logical stream into a
time-accurate Ogg Opus container. Missing time between consecutive real
frames is filled with synthesized silence frames so the decoded timeline
has no unexplained jumps.

States:
    AWAITING_FIRST_FRAME --write_frame--> STREAMING --close--> CLOSED

Rules:
- The first frame establishes last_sample_index; no gap analysis. With a
  start_time, it is preceded by silence covering the wall-clock time from
  start_time to its arrival_time.
- A last_sample_index of 0 means "no frame yet" and never triggers
  gap analysis, even in STREAMING.
- gap <= FRAME_SAMPLES is jitter: no silence.
- gap > FRAME_SAMPLES: one silence frame per whole 960-sample slot strictly
  between the previous real frame and this one, 960 samples apart.
- A gap needing more than max_silence_frames is a discontinuity: no
  silence, and the frame is placed right after the previous one.
- gap < 0 (late / reordered frame): written as-is, no gap analysis, and
  last_sample_index is not rewound.

Owned exclusively by one stream's processing task.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Protocol

from audio.frames import CompressedFrame
from constants import (
    ENCODER_PROGRESS_LOG_EVERY,
    FRAME_MS,
    FRAME_SAMPLES,
    MAX_SILENCE_FILL_FRAMES,
    OPUS_SILENCE_FRAME,
)
from container.ogg import ContainerError, StreamClosed
from observability.logger import EventLogger
from protocol.rtp import sample_delta


class PacketWriter(Protocol):
    """The part of OggOpusWriter the encoder depends on."""

    def write_packet(self, payload: bytes, *, position: int) -> None: ...

    def close(self) -> None: ...


class EncoderState(str, Enum):
    AWAITING_FIRST_FRAME = "awaiting_first_frame"
    STREAMING = "streaming"
    CLOSED = "closed"


@dataclass
class EncoderStats:
    """
    Counters for one encoder lifetime.

    frames_written counts real frames only; silence_frames counts
    synthesized ones, lead-in included.
    """
    frames_written: int = 0
    silence_frames: int = 0
    gaps: int = 0
    reordered: int = 0
    discontinuities: int = 0


class GapAwareEncoder:
    """
    Writes real and synthesized-silence Opus frames to a PacketWriter.
    """

    def __init__(
        self,
        writer: PacketWriter,
        *,
        log: EventLogger,
        stream_id: str | None = None,
        silence_frame: bytes = OPUS_SILENCE_FRAME,
        start_time: float | None = None,
        max_silence_frames: int = MAX_SILENCE_FILL_FRAMES,
    ) -> None:
        if not silence_frame:
            raise ValueError("silence_frame must be non-empty")
        if max_silence_frames < 0:
            raise ValueError("max_silence_frames must be >= 0")

        self._writer = writer
        self._log = log.bind(component="container_encoder", stream_id=stream_id)
        self._silence_frame = silence_frame
        self._start_time = start_time
        self._max_silence_frames = max_silence_frames

        self._state = EncoderState.AWAITING_FIRST_FRAME
        self._last_sample_index = 0
        # Unwrapped offset of the last real frame from the container start
        self._position = 0
        self.stats = EncoderStats()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> EncoderState:
        return self._state

    @property
    def last_sample_index(self) -> int:
        return self._last_sample_index

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write_frame(self, frame: CompressedFrame) -> None:
        """
        Write one real frame, preceded by any silence its gap requires.

        Raises:
            StreamClosed if close() was already called.
            ContainerError if the underlying writer fails.
        """
        if self._state is EncoderState.CLOSED:
            raise StreamClosed("stream closed")

        if self._state is EncoderState.AWAITING_FIRST_FRAME:
            self._write_lead_in(frame)
            self._write(frame.payload, position=self._position, silent=False)
            self._last_sample_index = frame.sample_index
            self._state = EncoderState.STREAMING
            self._log.debug(
                "ENCODER_FIRST_FRAME",
                sample_index=frame.sample_index,
                sequence_number=frame.sequence_number,
                position=self._position,
            )
            return

        gap = sample_delta(self._last_sample_index, frame.sample_index)

        if gap < 0:
            self.stats.reordered += 1
            self._log.warning(
                "ENCODER_REORDERED_FRAME",
                sample_index=frame.sample_index,
                last_sample_index=self._last_sample_index,
                gap=gap,
            )
            self._write(frame.payload, position=self._position + gap, silent=False)
            return

        if gap > FRAME_SAMPLES and self._last_sample_index != 0:
            if (gap - 1) // FRAME_SAMPLES > self._max_silence_frames:
                self.stats.discontinuities += 1
                self._log.warning(
                    "ENCODER_DISCONTINUITY",
                    gap=gap,
                    from_sample_index=self._last_sample_index,
                    sample_index=frame.sample_index,
                )
                gap = FRAME_SAMPLES
            else:
                self._fill_gap(gap)

        self._write(frame.payload, position=self._position + gap, silent=False)
        self._position += gap
        self._last_sample_index = frame.sample_index

    def close(self) -> None:
        """
        Finalize the container. Later calls are no-ops.
        """
        if self._state is EncoderState.CLOSED:
            return
        self._state = EncoderState.CLOSED

        try:
            self._writer.close()
        except OSError as exc:
            raise ContainerError(f"finalize failed: {exc}") from exc

        self._log.info(
            "ENCODER_CLOSED",
            last_sample_index=self._last_sample_index,
            **asdict(self.stats),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _write_lead_in(self, frame: CompressedFrame) -> None:
        if self._start_time is None:
            return

        elapsed_ms = round((frame.arrival_time - self._start_time) * 1000)
        count = elapsed_ms // FRAME_MS
        if count <= 0:
            return
        if count > self._max_silence_frames:
            self._log.warning(
                "ENCODER_LEAD_IN_CAPPED",
                requested=count,
                written=self._max_silence_frames,
            )
            count = self._max_silence_frames

        self._log.debug("ENCODER_LEAD_IN", elapsed_ms=elapsed_ms, silence_frames=count)
        for k in range(count):
            self._write(self._silence_frame, position=k * FRAME_SAMPLES, silent=True)

        self.stats.silence_frames += count
        self._position = count * FRAME_SAMPLES

    def _fill_gap(self, gap: int) -> None:
        count = (gap - 1) // FRAME_SAMPLES

        self._log.debug(
            "ENCODER_GAP_FILL",
            gap=gap,
            silence_frames=count,
            from_sample_index=self._last_sample_index,
        )

        for k in range(1, count + 1):
            self._write(
                self._silence_frame,
                position=self._position + k * FRAME_SAMPLES,
                silent=True,
            )

        self.stats.gaps += 1
        self.stats.silence_frames += count

    def _write(self, payload: bytes, *, position: int, silent: bool) -> None:
        try:
            self._writer.write_packet(payload, position=position)
        except OSError as exc:
            raise ContainerError(f"write failed: {exc}") from exc

        if silent:
            return

        self.stats.frames_written += 1
        if self.stats.frames_written % ENCODER_PROGRESS_LOG_EVERY == 0:
            self._log.debug(
                "ENCODER_PROGRESS",
                frames_written=self.stats.frames_written,
                silence_frames=self.stats.silence_frames,
            )
