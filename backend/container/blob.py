"""
In-memory Ogg Opus blob generation for a stored sample range.

Reads persisted frames for [start_sample, end_sample] through the
PacketStore retrieval query and runs them through a fresh gap-aware
encoder. Either the complete container bytes are returned or
ContainerGenerationError is raised; partial output is never returned.
"""

from __future__ import annotations

import io
from typing import Sequence

from audio.frames import CompressedFrame
from constants import ENCODER_PROGRESS_LOG_EVERY
from container.encoder import GapAwareEncoder
from container.ogg import ContainerError, OggOpusWriter
from observability.logger import EventLogger
from observability.metrics import timed
from storage.packets import PacketStore, StorageError


class ContainerGenerationError(ContainerError):
    """Raised when a stored range cannot be turned into a container."""


class NoFramesInRange(ContainerGenerationError):
    """The requested range holds no stored frames."""


def encode_ogg_opus(
    frames: Sequence[CompressedFrame],
    *,
    log: EventLogger,
    stream_id: str | None = None,
    start_time: float | None = None,
) -> bytes:
    """
    Encode already-fetched frames (ascending sample_index) into one
    complete Ogg Opus container.

    start_time:
        Wall-clock start of the recording (seconds since epoch). When set,
        the container opens with silence up to the first frame's
        arrival_time.

    Raises:
        ContainerGenerationError on write or finalize failure.
    """
    buffer = io.BytesIO()
    encoder = GapAwareEncoder(
        OggOpusWriter(buffer),
        log=log,
        stream_id=stream_id,
        start_time=start_time,
    )

    try:
        for i, frame in enumerate(frames):
            encoder.write_frame(frame)
            if i % ENCODER_PROGRESS_LOG_EVERY == 0:
                log.debug("BLOB_WRITE_PROGRESS", index=i, total=len(frames))
        encoder.close()
    except ContainerError as exc:
        log.error("BLOB_WRITE_FAILED", error=str(exc))
        raise ContainerGenerationError(f"write container: {exc}") from exc

    return buffer.getvalue()


async def generate_ogg_opus_blob(
    store: PacketStore,
    stream_id: str,
    start_sample: int,
    end_sample: int,
    *,
    log: EventLogger,
    start_time: float | None = None,
    allow_empty: bool = True,
) -> bytes:
    """
    Build an Ogg Opus container for one stream's sample range.

    An empty range yields a valid container with no audio, unless
    allow_empty is False.

    Raises:
        NoFramesInRange if the range is empty and allow_empty is False.
        ContainerGenerationError on fetch, write or finalize failure.
    """
    log = log.bind(component="blob", stream_id=stream_id)
    log.debug(
        "BLOB_GENERATION_START",
        start_sample=start_sample,
        end_sample=end_sample,
    )

    with timed("ogg_blob_generation", log=log, details={"stream_id": stream_id}):
        try:
            frames = await store.fetch_frames(stream_id, start_sample, end_sample)
        except StorageError as exc:
            log.error("BLOB_FETCH_FAILED", error=str(exc))
            raise ContainerGenerationError(f"fetch packets: {exc}") from exc

        log.debug("BLOB_FRAMES_FETCHED", count=len(frames))
        if not frames and not allow_empty:
            raise NoFramesInRange(
                f"no frames for {stream_id} in [{start_sample}, {end_sample}]"
            )

        blob = encode_ogg_opus(frames, log=log, stream_id=stream_id, start_time=start_time)

    log.debug("BLOB_GENERATION_DONE", output_size=len(blob))
    return blob
