"""
Speech playback into a call.

Flow:
    text -> SpeechSynthesizer (compressed speech bytes)
         -> TranscodingPipeline (PCMFrame, 20ms stereo)
         -> FrameCompressor (one Opus packet per frame)
         -> FramePacer (fixed 20ms grid)
         -> PacketSender

Responsibilities:
- Wire the stages together for one utterance
- Zero-pad the short final frame so every compressed packet covers 20ms
- Skip (and log) frames the compressor rejects

Non-responsibilities:
- No Opus implementation (FrameCompressor is a collaborator)
- No transport (PacketSender is a collaborator)
- No retries
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional, Protocol

from openai import AsyncOpenAI

from audio.frames import PCMFrame
from config import AppConfig
from constants import FRAME_DURATION_S, TTS_STREAM_CHUNK_BYTES
from observability.logger import EventLogger
from observability.metrics import timed
from playback.transcoder import DecoderCommand, TranscodingPipeline


# ---------------------------------------------------------------------------
# Collaborator contracts
# ---------------------------------------------------------------------------


class SpeechSynthesizer(ABC):
    """Text in, compressed speech bytes (e.g. MP3) out."""

    @abstractmethod
    def synthesize(self, text: str) -> AsyncIterator[bytes]:
        """
        Stream synthesized speech for one utterance.

        Provider errors are raised from the iterator; no retries.
        """
        raise NotImplementedError


class FrameCompressor(Protocol):
    def encode(self, frame: PCMFrame) -> bytes:
        """Compress one full 20ms PCM frame into one packet payload."""
        ...


class PacketSender(Protocol):
    async def send(self, payload: bytes) -> None:
        ...


# ---------------------------------------------------------------------------
# OpenAI speech synthesis
# ---------------------------------------------------------------------------


class OpenAISpeechSynthesizer(SpeechSynthesizer):
    """
    Streams MP3 from the OpenAI speech endpoint.

    The client is created once per process and shared.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str = "tts-1",
        voice: str = "alloy",
        chunk_size: int = TTS_STREAM_CHUNK_BYTES,
    ) -> None:
        self._client = client
        self._model = model
        self._voice = voice
        self._chunk_size = chunk_size

    @classmethod
    def from_config(cls, config: AppConfig) -> OpenAISpeechSynthesizer:
        if not config.openai_api_key:
            raise RuntimeError("OPENAI_API_KEY environment variable not set")
        return cls(
            AsyncOpenAI(api_key=config.openai_api_key),
            model=config.tts_model,
            voice=config.tts_voice,
        )

    async def synthesize(self, text: str) -> AsyncIterator[bytes]:
        async with self._client.audio.speech.with_streaming_response.create(
            model=self._model,
            voice=self._voice,
            input=text,
            response_format="mp3",
        ) as response:
            async for chunk in response.iter_bytes(self._chunk_size):
                yield chunk


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------


class FramePacer:
    """
    Releases sends on a fixed grid measured on the event-loop clock.

    Deadlines are start + n * interval, so a late send does not shift
    later ones.
    """

    def __init__(self, interval_s: float = FRAME_DURATION_S) -> None:
        if interval_s < 0:
            raise ValueError("interval_s must be >= 0")
        self._interval_s = interval_s
        self._start: Optional[float] = None
        self._ticks = 0

    @property
    def ticks(self) -> int:
        return self._ticks

    def reset(self) -> None:
        self._start = None
        self._ticks = 0

    async def wait(self) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        if self._start is None:
            self._start = now

        deadline = self._start + self._ticks * self._interval_s
        self._ticks += 1

        delay = deadline - now
        if delay > 0:
            await asyncio.sleep(delay)


# ---------------------------------------------------------------------------
# Speaker
# ---------------------------------------------------------------------------


class Speaker:
    """
    Plays synthesized speech into a call, one utterance at a time.
    """

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        compressor: FrameCompressor,
        sender: PacketSender,
        *,
        command: DecoderCommand,
        log: EventLogger,
        pacer: FramePacer | None = None,
    ) -> None:
        self._synthesizer = synthesizer
        self._compressor = compressor
        self._sender = sender
        self._command = command
        self._log = log.bind(component="speaker")
        self._pacer = pacer or FramePacer()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        compressor: FrameCompressor,
        sender: PacketSender,
        *,
        log: EventLogger,
    ) -> Speaker:
        """OpenAI speech and the configured ffmpeg binary."""
        return cls(
            OpenAISpeechSynthesizer.from_config(config),
            compressor,
            sender,
            command=DecoderCommand.from_config(config),
            log=log,
        )

    @property
    def command(self) -> DecoderCommand:
        return self._command

    async def speak(self, text: str) -> int:
        """
        Synthesize `text` and send it as paced compressed frames.

        Returns:
            Number of frames sent.

        Raises:
            DecoderStartError if the decoder cannot be spawned (nothing
            is sent); DecoderError if decoding fails mid-stream (sending
            stops at that point).
        """
        if not text.strip():
            self._log.debug("SPEAK_SKIPPED_EMPTY")
            return 0

        sent = 0
        skipped = 0
        self._pacer.reset()

        with timed("playback_speak", log=self._log, details={"chars": len(text)}):
            async with TranscodingPipeline(self._command, log=self._log) as pipeline:
                frames = await pipeline.start(self._synthesizer.synthesize(text))

                async for frame in frames:
                    if not frame.is_full:
                        frame = frame.padded()

                    try:
                        payload = self._compressor.encode(frame)
                    except Exception as exc:  # pylint: disable=broad-exception-caught
                        skipped += 1
                        self._log.warning(
                            "FRAME_ENCODE_FAILED",
                            frame_index=sent + skipped - 1,
                            exception=type(exc).__name__,
                            message=str(exc),
                        )
                        continue

                    await self._pacer.wait()
                    await self._sender.send(payload)
                    sent += 1

        self._log.info("SPEECH_PLAYED", frames_sent=sent, frames_skipped=skipped)
        return sent
