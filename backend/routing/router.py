"""
Stream router.

Responsibilities:
- Map (ssrc, call_id, channel_id) to a stable logical stream id,
  creating the stream on first sight
- Own one bounded frame queue and one worker task per stream
- Open recognition sessions for new streams (zero or more per stream)
- Tear streams down when their call is left

Failure model:
- Malformed packets are dropped and logged (never fatal to a stream)
- Stream creation failures drop the packet, are logged, and cache
  nothing, so the next packet retries
- A full queue drops the newest frame with a warning; ingestion never
  blocks
- Per-frame persistence / recognition errors are logged and the worker
  keeps going; a container format error stops that stream's container
  output only
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Sequence
from uuid import uuid4

from adapters.asr.base import RecognitionBackend
from audio.frames import CompressedFrame, InboundPacket
from audio.queues import StreamFrameQueue
from constants import STREAM_QUEUE_CAPACITY
from container.encoder import GapAwareEncoder
from container.ogg import ByteSink, ContainerError, OggOpusWriter
from observability.logger import EventLogger
from protocol.rtp import (
    PacketProtocolError,
    check_sequence_gap,
    decode_rtp_packet,
    sample_delta,
)
from routing.streams import LogicalStream, StreamKey, StreamRegistry
from storage.packets import PacketStore, StreamRecord

ContainerSinkFactory = Callable[[LogicalStream], ByteSink]


class StreamCreationError(Exception):
    """Raised when a logical stream cannot be looked up or created."""


def _new_stream_id() -> str:
    return f"stream_{uuid4().hex[:12]}"


class StreamRouter:
    """
    One router per voice connection (may span several calls).

    All public coroutines must run on the same event loop.
    """

    def __init__(
        self,
        store: PacketStore,
        *,
        log: EventLogger,
        recognizers: Sequence[RecognitionBackend] = (),
        locales: Sequence[str] = (),
        queue_capacity: int = STREAM_QUEUE_CAPACITY,
        container_sink_factory: ContainerSinkFactory | None = None,
        new_stream_id: Callable[[], str] = _new_stream_id,
    ) -> None:
        self._store = store
        self._log = log.bind(component="stream_router")
        self._recognizers = tuple(recognizers)
        self._locales = tuple(locales)
        self._queue_capacity = queue_capacity
        self._container_sink_factory = container_sink_factory
        self._new_stream_id = new_stream_id

        self._registry = StreamRegistry()
        self._creation_locks: dict[StreamKey, asyncio.Lock] = {}
        self._creation_waiters: dict[StreamKey, int] = {}
        # Bumped by every leave_call; creations that straddle one are abandoned
        self._call_generations: dict[str, int] = {}
        self._leaving_calls: set[str] = set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def registry(self) -> StreamRegistry:
        return self._registry

    def get_stream(self, stream_id: str) -> LogicalStream | None:
        return self._registry.get(stream_id)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(
        self,
        source_id: int,
        call_id: str,
        channel_id: str,
        *,
        first_packet: InboundPacket | None = None,
    ) -> str:
        """
        Return the logical stream id for the key, creating it on first sight.

        Concurrent first-sight calls for the same key create exactly one
        stream; the others wait for it and return the same id.

        Raises:
            StreamCreationError if lookup/creation fails (nothing cached).
        """
        key: StreamKey = (source_id, call_id, channel_id)

        stream_id = self._registry.lookup(key)
        if stream_id is not None:
            return stream_id

        lock = self._creation_locks.setdefault(key, asyncio.Lock())
        self._creation_waiters[key] = self._creation_waiters.get(key, 0) + 1
        try:
            async with lock:
                stream_id = self._registry.lookup(key)
                if stream_id is not None:
                    return stream_id

                if call_id in self._leaving_calls:
                    raise StreamCreationError(f"call is being left: {call_id}")

                generation = self._call_generations.get(call_id, 0)
                stream = await self._create_stream(key, first_packet)
                await self._open_sessions(stream)

                # leave_call ran while the store or a recognizer was awaited
                if self._call_generations.get(call_id, 0) != generation:
                    self._log.info("STREAM_CREATE_ABORTED", **stream.log_context())
                    await self._finish_stream(stream)
                    raise StreamCreationError(f"call was left during creation: {call_id}")

                stream.task = asyncio.create_task(
                    self._run_stream(stream),
                    name=f"stream-worker-{stream.id}",
                )
                self._registry.add(stream)
        finally:
            self._creation_waiters[key] -= 1
            if self._creation_waiters[key] == 0:
                del self._creation_waiters[key]
                del self._creation_locks[key]

        return stream.id

    async def _create_stream(
        self,
        key: StreamKey,
        first_packet: InboundPacket | None,
    ) -> LogicalStream:
        ssrc, call_id, channel_id = key
        sequence_offset = first_packet.sequence_number if first_packet else 0
        sample_offset = first_packet.timestamp if first_packet else 0

        try:
            stream_id = await self._store.find_stream(ssrc, call_id, channel_id)
            if stream_id is None:
                stream_id = self._new_stream_id()
                await self._store.create_stream(
                    StreamRecord(
                        stream_id=stream_id,
                        ssrc=ssrc,
                        call_id=call_id,
                        channel_id=channel_id,
                        sequence_offset=sequence_offset,
                        sample_offset=sample_offset,
                    )
                )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log.error(
                "STREAM_CREATE_FAILED",
                ssrc=ssrc,
                call_id=call_id,
                channel_id=channel_id,
                exception=type(exc).__name__,
                message=str(exc),
            )
            raise StreamCreationError(f"create stream for {key}: {exc}") from exc

        stream = LogicalStream(
            id=stream_id,
            ssrc=ssrc,
            call_id=call_id,
            channel_id=channel_id,
            sequence_offset=sequence_offset,
            sample_offset=sample_offset,
            queue=StreamFrameQueue(capacity=self._queue_capacity),
        )

        if self._container_sink_factory is not None:
            self._open_container(stream)

        self._log.info("STREAM_CREATED", **stream.log_context())
        return stream

    def _open_container(self, stream: LogicalStream) -> None:
        """Live recording is best effort: a stream without a sink still routes."""
        assert self._container_sink_factory is not None
        try:
            stream.container_sink = self._container_sink_factory(stream)
            stream.encoder = GapAwareEncoder(
                OggOpusWriter(stream.container_sink),
                log=self._log,
                stream_id=stream.id,
            )
        except (OSError, ContainerError) as exc:
            self._log.error(
                "STREAM_CONTAINER_FAILED",
                stage="open",
                exception=type(exc).__name__,
                message=str(exc),
                **stream.log_context(),
            )
            stream.encoder = None
            self._close_sink(stream)

    async def _open_sessions(self, stream: LogicalStream) -> None:
        for backend in self._recognizers:
            for locale in self._locales:
                try:
                    session = await backend.start(locale)
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    self._log.error(
                        "RECOGNITION_START_FAILED",
                        locale=locale,
                        backend=type(backend).__name__,
                        exception=type(exc).__name__,
                        message=str(exc),
                        **stream.log_context(),
                    )
                    continue
                stream.sessions.add(session)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(
        self,
        datagram: bytes,
        *,
        call_id: str,
        channel_id: str,
        arrival_time: float | None = None,
    ) -> bool:
        """
        Decode one raw RTP datagram and route it.

        Returns True if the frame was queued.
        """
        try:
            packet = decode_rtp_packet(datagram)
        except PacketProtocolError as exc:
            self._log.warning(
                "PACKET_DROPPED_MALFORMED",
                call_id=call_id,
                channel_id=channel_id,
                length=len(datagram),
                reason=str(exc),
            )
            return False

        return await self.ingest_packet(
            packet,
            call_id=call_id,
            channel_id=channel_id,
            arrival_time=arrival_time,
        )

    async def ingest_packet(
        self,
        packet: InboundPacket,
        *,
        call_id: str,
        channel_id: str,
        arrival_time: float | None = None,
    ) -> bool:
        """
        Route one decoded packet to its stream queue.

        Never blocks on a full queue. Returns True if the frame was queued.
        """
        try:
            stream_id = await self.resolve(
                packet.ssrc,
                call_id,
                channel_id,
                first_packet=packet,
            )
        except StreamCreationError as exc:
            self._log.warning(
                "PACKET_DROPPED_NO_STREAM",
                ssrc=packet.ssrc,
                call_id=call_id,
                channel_id=channel_id,
                reason=str(exc),
            )
            return False

        stream = self._registry.get(stream_id)
        if stream is None:
            return False

        if not stream.queue.offer(packet.to_frame(arrival_time)):
            self._log.warning(
                "STREAM_CLOSED_DROP" if stream.queue.closed else "STREAM_QUEUE_FULL_DROP",
                sequence_number=packet.sequence_number,
                sample_index=packet.timestamp,
                queue=stream.queue.snapshot(),
                **stream.log_context(),
            )
            return False

        return True

    # ------------------------------------------------------------------
    # Per-stream worker
    # ------------------------------------------------------------------

    async def _run_stream(self, stream: LogicalStream) -> None:
        log = self._log.bind(**stream.log_context())
        log.debug("STREAM_WORKER_STARTED")

        try:
            while True:
                frame = await stream.queue.get()
                if frame is None:
                    break
                await self._process_frame(stream, frame, log)
        except asyncio.CancelledError:
            stream.queue.clear()
            raise
        finally:
            await self._finish_stream(stream)

    async def _process_frame(
        self,
        stream: LogicalStream,
        frame: CompressedFrame,
        log: EventLogger,
    ) -> None:
        seq = check_sequence_gap(
            last_seq=stream.last_sequence_number,
            current_seq=frame.sequence_number,
        )
        if seq.gap:
            log.debug(
                "SEQ_GAP_DETECTED",
                expected=seq.expected,
                actual=seq.actual,
                gap_size=seq.gap_size,
            )
        stream.last_sequence_number = frame.sequence_number

        try:
            await self._store.save_frame(stream.id, frame)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log.error(
                "FRAME_SAVE_FAILED",
                sample_index=frame.sample_index,
                exception=type(exc).__name__,
                message=str(exc),
            )

        if stream.encoder is not None:
            try:
                stream.encoder.write_frame(frame)
            except ContainerError as exc:
                log.error("STREAM_CONTAINER_FAILED", message=str(exc))
                stream.encoder = None

        for session in list(stream.sessions):
            try:
                await session.send_audio(frame.payload, frame.sample_index)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log.error(
                    "RECOGNITION_SEND_FAILED",
                    exception=type(exc).__name__,
                    message=str(exc),
                )

        if stream.last_sample_index == 0 or sample_delta(
            stream.last_sample_index, frame.sample_index
        ) > 0:
            stream.last_sample_index = frame.sample_index
        stream.frames_processed += 1

    def _close_sink(self, stream: LogicalStream) -> None:
        sink, stream.container_sink = stream.container_sink, None
        close = getattr(sink, "close", None)
        if not callable(close):
            return
        try:
            close()
        except OSError as exc:
            self._log.error(
                "STREAM_CONTAINER_FAILED",
                stage="close",
                exception=type(exc).__name__,
                message=str(exc),
                **stream.log_context(),
            )

    async def _finish_stream(self, stream: LogicalStream) -> None:
        if stream.finished:
            return
        stream.finished = True
        log = self._log.bind(**stream.log_context())

        if stream.encoder is not None:
            try:
                stream.encoder.close()
            except ContainerError as exc:
                log.error("STREAM_CONTAINER_FAILED", message=str(exc))
            stream.encoder = None

        self._close_sink(stream)

        for session in list(stream.sessions):
            try:
                await session.close()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log.error(
                    "RECOGNITION_CLOSE_FAILED",
                    exception=type(exc).__name__,
                    message=str(exc),
                )
        stream.sessions.clear()

        log.info(
            "STREAM_WORKER_STOPPED",
            frames_processed=stream.frames_processed,
            last_sample_index=stream.last_sample_index,
            queue=stream.queue.snapshot(),
        )

    # ------------------------------------------------------------------
    # Teardown hooks
    # ------------------------------------------------------------------

    async def leave_call(self, call_id: str, *, cancel: bool = False) -> int:
        """
        Tear down every stream of a call.

        cancel=False drains queued frames first; cancel=True discards them.
        Returns the number of streams removed.
        """
        self._leaving_calls.add(call_id)
        self._call_generations[call_id] = self._call_generations.get(call_id, 0) + 1
        try:
            streams = self._registry.by_call(call_id)
            for stream in streams:
                stream.queue.close()
                if cancel and stream.task is not None:
                    stream.task.cancel()

            for stream in streams:
                await self._await_worker(stream)
                if cancel:
                    stream.queue.clear()
                # A worker cancelled before its first step never ran its cleanup
                await self._finish_stream(stream)
                self._registry.remove(stream.id)
        finally:
            self._leaving_calls.discard(call_id)

        self._log.info("CALL_LEFT", call_id=call_id, streams=len(streams))
        return len(streams)

    async def close(self, *, cancel: bool = False) -> None:
        """Leave every call this router knows about."""
        call_ids = {s.call_id for s in self._registry.all()}
        for call_id in sorted(call_ids):
            await self.leave_call(call_id, cancel=cancel)

    async def _await_worker(self, stream: LogicalStream) -> None:
        if stream.task is None:
            return
        try:
            await stream.task
        except asyncio.CancelledError:
            if not stream.task.cancelled():
                raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log.error(
                "STREAM_WORKER_FAILED",
                exception=type(exc).__name__,
                message=str(exc),
                **stream.log_context(),
            )

    def snapshot(self) -> dict[str, Any]:
        """Lightweight snapshot for logging / metrics."""
        return {
            "streams": len(self._registry),
            "queues": {s.id: s.queue.snapshot() for s in self._registry.all()},
        }
