"""
Playback transcoding pipeline.

Compressed speech (e.g. MP3) -> external decoder -> 48kHz stereo PCM16
-> fixed 20ms chunks -> int16 sample frames.

Stages (each its own task, connected by bounded asyncio queues):
- Feed:     source bytes -> decoder stdin (stdin closed at end of input)
- Drain:    decoder stdout -> PCMRechunker -> exact PCM_FRAME_BYTES chunks,
            then the short tail (if any) as the final emission
- Convert:  chunk -> PCMFrame (int16, interleaved)

Rules:
- An end marker flows downstream in order; each stage forwards it once.
- Any stage failure, or a decoder exiting non-zero, ends the pipeline
  early and is raised from the frame iterator as DecoderError.
- aclose() kills the decoder and cancels the stage tasks; it is safe to
  call at any point and more than once.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import AsyncIterator, Final, Optional, Union

from audio.frame_generator import PCMRechunker, bytes_per_frame
from audio.frames import PCMFrame
from audio.pcm import pcm16le_to_int16
from config import AppConfig
from constants import (
    AUDIO_FORMAT,
    DECODER_LOW_LATENCY_ARGS,
    DECODER_READ_CHUNK_BYTES,
    PLAYBACK_STAGE_QUEUE_SIZE,
    AudioFormat,
)
from observability.logger import EventLogger


class PlaybackError(Exception):
    """Base error for the playback path."""


class DecoderStartError(PlaybackError):
    """The decoder process could not be spawned."""


class DecoderError(PlaybackError):
    """The decoder or a pipeline stage failed after start."""


class _End:
    """End-of-stream marker passed between stages."""


_END: Final = _End()

_Chunk = Union[bytes, _End]
_Frame = Union[PCMFrame, _End]


@dataclass(frozen=True)
class DecoderCommand:
    """
    argv of the external decoder.

    The decoder reads compressed audio on stdin and writes raw PCM16 LE,
    48kHz, interleaved stereo on stdout.
    """
    program: str
    args: tuple[str, ...]

    @classmethod
    def ffmpeg(
        cls,
        path: str = "ffmpeg",
        *,
        fmt: AudioFormat = AUDIO_FORMAT,
    ) -> DecoderCommand:
        return cls(
            program=path,
            args=(
                "-i", "pipe:0",
                "-f", "s16le",
                "-acodec", "pcm_s16le",
                "-ar", str(fmt.sample_rate_hz),
                "-ac", str(fmt.channels),
                *DECODER_LOW_LATENCY_ARGS,
                "-",
            ),
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> DecoderCommand:
        return cls.ffmpeg(config.ffmpeg_path)

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]


class TranscodingPipeline:
    """
    One playback run through one decoder process.

    Usage:
        async with TranscodingPipeline(cmd, log=log) as pipeline:
            async for frame in await pipeline.start(mp3_chunks):
                ...

    Every frame is exactly PCM_FRAME_SAMPLES long except possibly the
    last, which is shorter and marks completion.
    """

    def __init__(
        self,
        command: DecoderCommand,
        *,
        log: EventLogger,
        queue_size: int = PLAYBACK_STAGE_QUEUE_SIZE,
        read_chunk_bytes: int = DECODER_READ_CHUNK_BYTES,
    ) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be > 0")

        self._command = command
        self._log = log.bind(component="transcoder")
        self._read_chunk_bytes = read_chunk_bytes
        self._rechunker = PCMRechunker(frame_bytes=bytes_per_frame())

        self._chunks: asyncio.Queue[_Chunk] = asyncio.Queue(maxsize=queue_size)
        self._frames: asyncio.Queue[_Frame] = asyncio.Queue(maxsize=queue_size)

        self._process: Optional[asyncio.subprocess.Process] = None
        self._tasks: list[asyncio.Task[None]] = []
        self._error: Optional[BaseException] = None
        self._failed_stage: Optional[str] = None
        self._started = False
        self._closed = False

        self.bytes_in = 0
        self.bytes_out = 0
        self.frames_out = 0

    async def __aenter__(self) -> TranscodingPipeline:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, source: AsyncIterator[bytes]) -> AsyncIterator[PCMFrame]:
        """
        Spawn the decoder and the stage tasks.

        Raises:
            DecoderStartError if the process cannot be spawned. No frame
            is produced in that case.
        """
        if self._started:
            raise PlaybackError("pipeline already started")
        self._started = True

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._command.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            self._log.error(
                "DECODER_START_FAILED",
                program=self._command.program,
                exception=type(exc).__name__,
                message=str(exc),
            )
            raise DecoderStartError(f"cannot start {self._command.program}: {exc}") from exc

        self._log.debug("DECODER_STARTED", pid=self._process.pid)

        self._tasks = [
            asyncio.create_task(self._feed(source), name="playback-feed"),
            asyncio.create_task(self._drain(), name="playback-drain"),
            asyncio.create_task(self._convert(), name="playback-convert"),
        ]
        return self._iter_frames()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True

        self._kill_decoder()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

        if self._process is not None:
            await self._process.wait()

        self._log.debug(
            "PIPELINE_CLOSED",
            bytes_in=self.bytes_in,
            bytes_out=self.bytes_out,
            frames_out=self.frames_out,
            returncode=self._process.returncode if self._process else None,
        )

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def _iter_frames(self) -> AsyncIterator[PCMFrame]:
        try:
            while True:
                item = await self._frames.get()
                if isinstance(item, _End):
                    break
                yield item

            if self._error is not None:
                if isinstance(self._error, DecoderError):
                    raise self._error
                raise DecoderError(
                    f"{self._failed_stage} stage failed: {self._error}"
                ) from self._error
        finally:
            await self.aclose()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _feed(self, source: AsyncIterator[bytes]) -> None:
        assert self._process is not None and self._process.stdin is not None
        stdin = self._process.stdin

        try:
            async for chunk in source:
                if not chunk:
                    continue
                stdin.write(chunk)
                await stdin.drain()
                self.bytes_in += len(chunk)
        except (BrokenPipeError, ConnectionResetError):
            # Decoder exited early; its exit status decides the outcome
            self._log.debug("DECODER_STDIN_CLOSED", bytes_in=self.bytes_in)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._fail("feed", exc)
        finally:
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                stdin.close()

    async def _drain(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout

        try:
            while True:
                data = await stdout.read(self._read_chunk_bytes)
                if not data:
                    break
                self.bytes_out += len(data)
                for chunk in self._rechunker.push(data):
                    await self._chunks.put(chunk)

            tail = self._rechunker.flush()
            if tail:
                await self._chunks.put(tail)

            returncode = await self._process.wait()
            if returncode != 0 and self._error is None:
                self._error = DecoderError(f"decoder exited with status {returncode}")
                self._failed_stage = "decoder"
                self._log.error("DECODER_EXIT_NONZERO", returncode=returncode)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._fail("drain", exc)

        await self._chunks.put(_END)

    async def _convert(self) -> None:
        try:
            while True:
                chunk = await self._chunks.get()
                if isinstance(chunk, _End):
                    break

                samples = pcm16le_to_int16(chunk)
                if len(samples) == 0:
                    continue
                await self._frames.put(PCMFrame(samples=samples))
                self.frames_out += 1
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._fail("convert", exc)

        await self._frames.put(_END)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _fail(self, stage: str, exc: BaseException) -> None:
        if self._error is None:
            self._error = exc
            self._failed_stage = stage

        self._log.error(
            "PLAYBACK_STAGE_FAILED",
            stage=stage,
            exception=type(exc).__name__,
            message=str(exc),
        )
        self._kill_decoder()

    def _kill_decoder(self) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()


async def decode_to_frames(
    source: AsyncIterator[bytes],
    *,
    log: EventLogger,
    command: DecoderCommand | None = None,
    config: AppConfig | None = None,
) -> AsyncIterator[PCMFrame]:
    """
    Decode a compressed byte stream into PCM frames.

    The decoder comes from `command`, else from `config.ffmpeg_path`.
    """
    if command is None:
        command = DecoderCommand.from_config(config or AppConfig())

    async with TranscodingPipeline(command, log=log) as pipeline:
        frames = await pipeline.start(source)
        async for frame in frames:
            yield frame
