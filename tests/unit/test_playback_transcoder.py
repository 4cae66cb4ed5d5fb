# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import sys
from typing import AsyncIterator

import numpy as np
import pytest

from audio.frames import PCMFrame
from constants import PCM_FRAME_BYTES, PCM_FRAME_SAMPLES
from observability.logger import make_logger
from playback.transcoder import (
    DecoderCommand,
    DecoderError,
    DecoderStartError,
    TranscodingPipeline,
    decode_to_frames,
)

# Stand-in decoders: the source bytes are already "PCM", so a copy is a decode
CAT = DecoderCommand(
    program=sys.executable,
    args=("-c", "import shutil, sys; shutil.copyfileobj(sys.stdin.buffer, sys.stdout.buffer)"),
)
EXIT_3 = DecoderCommand(
    program=sys.executable,
    args=("-c", "import sys; sys.stdin.buffer.read(); sys.exit(3)"),
)

LOG = make_logger(sink=lambda e: None)


def pcm_bytes(n_bytes: int) -> bytes:
    return (np.arange(n_bytes // 2, dtype=np.int16) * 7).astype("<i2").tobytes()[:n_bytes]


async def chunked(data: bytes, size: int = 1000) -> AsyncIterator[bytes]:
    for i in range(0, len(data), size):
        yield data[i : i + size]


async def collect(command: DecoderCommand, source: AsyncIterator[bytes]) -> list[PCMFrame]:
    async with TranscodingPipeline(command, log=LOG) as pipeline:
        frames = await pipeline.start(source)
        return [frame async for frame in frames]


# ---------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------

def test_ffmpeg_argv():
    argv = DecoderCommand.ffmpeg("/usr/bin/ffmpeg").argv

    assert argv[0] == "/usr/bin/ffmpeg"
    assert argv[1:11] == [
        "-i", "pipe:0", "-f", "s16le", "-acodec", "pcm_s16le", "-ar", "48000", "-ac", "2",
    ]
    assert "-analyzeduration" in argv
    assert argv[-1] == "-"


# ---------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------

def test_exact_multiple_gives_only_full_frames():
    k = 5
    data = pcm_bytes(k * PCM_FRAME_BYTES)

    frames = asyncio.run(collect(CAT, chunked(data)))

    assert len(frames) == k
    assert all(f.is_full for f in frames)
    joined = np.concatenate([f.samples for f in frames])
    assert joined.tobytes() == np.frombuffer(data, dtype="<i2").astype(np.int16).tobytes()


def test_remainder_gives_one_short_final_frame():
    k, r = 3, 1000
    data = pcm_bytes(k * PCM_FRAME_BYTES + r)

    frames = asyncio.run(collect(CAT, chunked(data, size=777)))

    assert len(frames) == k + 1
    assert all(len(f) == PCM_FRAME_SAMPLES for f in frames[:k])
    assert len(frames[-1]) == r // 2
    joined = np.concatenate([f.samples for f in frames])
    assert joined.astype("<i2").tobytes() == data


def test_empty_input_gives_no_frames():
    assert asyncio.run(collect(CAT, chunked(b""))) == []


# ---------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------

def test_missing_decoder_fails_before_any_frame():
    command = DecoderCommand(program="/nonexistent/decoder-binary", args=())

    with pytest.raises(DecoderStartError):
        asyncio.run(collect(command, chunked(b"\x00" * 10)))


def test_nonzero_exit_is_raised_from_iterator():
    with pytest.raises(DecoderError, match="status 3"):
        asyncio.run(collect(EXIT_3, chunked(pcm_bytes(PCM_FRAME_BYTES))))


def test_source_failure_terminates_pipeline():
    async def broken_source() -> AsyncIterator[bytes]:
        yield pcm_bytes(PCM_FRAME_BYTES)
        raise RuntimeError("tts connection dropped")

    with pytest.raises(DecoderError, match="feed"):
        asyncio.run(collect(CAT, broken_source()))


def test_early_close_kills_decoder():
    async def endless() -> AsyncIterator[bytes]:
        while True:
            yield pcm_bytes(PCM_FRAME_BYTES)
            await asyncio.sleep(0)

    async def scenario() -> int | None:
        pipeline = TranscodingPipeline(CAT, log=LOG)
        frames = await pipeline.start(endless())
        async for _ in frames:
            break
        await pipeline.aclose()
        await pipeline.aclose()
        return pipeline._process.returncode  # pylint: disable=protected-access

    assert asyncio.run(scenario()) is not None


def test_decode_to_frames_helper():
    async def scenario() -> int:
        count = 0
        async for _ in decode_to_frames(chunked(pcm_bytes(2 * PCM_FRAME_BYTES)), command=CAT, log=LOG):
            count += 1
        return count

    assert asyncio.run(scenario()) == 2
