# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import struct
from typing import Any

import pytest

from audio.frames import CompressedFrame
from constants import FRAME_SAMPLES, OGG_FLAG_EOS, OPUS_SILENCE_FRAME
from container.blob import ContainerGenerationError, NoFramesInRange, generate_ogg_opus_blob
from observability.logger import make_logger
from storage.packets import InMemoryPacketStore, PacketStore, StorageError, StreamRecord


def audio_pages(data: bytes) -> list[tuple[int, int, bytes]]:
    """(header_type, granule, body) for every page after the two headers."""
    pages = []
    offset = 0
    while offset < len(data):
        _, _, header_type, granule, _, _, _ = struct.unpack_from("<4sBBqIII", data, offset)
        n = data[offset + 26]
        body_start = offset + 27 + n
        end = body_start + sum(data[offset + 27 : body_start])
        pages.append((header_type, granule, data[body_start:end]))
        offset = end
    return pages[2:]


def frame(index: int, payload: bytes) -> CompressedFrame:
    return CompressedFrame(sequence_number=0, sample_index=index, payload=payload, arrival_time=0.0)


async def seeded_store(frames: list[CompressedFrame]) -> InMemoryPacketStore:
    store = InMemoryPacketStore()
    await store.create_stream(StreamRecord("s1", 1, "call", "chan", 0, 0))
    for f in frames:
        await store.save_frame("s1", f)
    return store


def test_blob_fills_gaps_and_keeps_range():
    events: list[dict[str, Any]] = []
    log = make_logger(sink=events.append, min_level="DEBUG")

    async def scenario() -> bytes:
        # Stored out of order; retrieval sorts by sample index
        store = await seeded_store([
            frame(1920, b"C"),
            frame(0, b"A"),
            frame(5760, b"D"),
            frame(960, b"B"),
            frame(99999, b"outside"),
        ])
        return await generate_ogg_opus_blob(store, "s1", 0, 5760, log=log)

    blob = asyncio.run(scenario())
    pages = audio_pages(blob)

    assert [body for _, _, body in pages] == [
        b"A", b"B", b"C",
        OPUS_SILENCE_FRAME, OPUS_SILENCE_FRAME, OPUS_SILENCE_FRAME,
        b"D",
    ]
    assert pages[-1][0] == OGG_FLAG_EOS
    assert pages[-1][1] == 7 * FRAME_SAMPLES
    assert any(e["event_type"] == "METRIC_TIMER" for e in events)


def test_empty_range_still_yields_valid_container():
    async def scenario() -> bytes:
        store = await seeded_store([frame(0, b"A")])
        return await generate_ogg_opus_blob(store, "s1", 960, 1920, log=make_logger(sink=lambda e: None))

    blob = asyncio.run(scenario())
    assert blob.startswith(b"OggS")
    assert audio_pages(blob) == [(OGG_FLAG_EOS, 0, b"")]


class BrokenStore(InMemoryPacketStore):
    async def fetch_frames(self, stream_id: str, start_sample: int, end_sample: int) -> list[CompressedFrame]:
        raise StorageError("connection lost")


def test_fetch_failure_raises_generation_error():
    store: PacketStore = BrokenStore()

    with pytest.raises(ContainerGenerationError):
        asyncio.run(generate_ogg_opus_blob(store, "s1", 0, 960, log=make_logger(sink=lambda e: None)))


def test_empty_range_can_be_rejected():
    async def scenario() -> bytes:
        store = await seeded_store([frame(0, b"A")])
        return await generate_ogg_opus_blob(
            store, "s1", 960, 1920, log=make_logger(sink=lambda e: None), allow_empty=False,
        )

    with pytest.raises(NoFramesInRange):
        asyncio.run(scenario())


def test_start_time_pads_leading_silence():
    async def scenario() -> bytes:
        store = await seeded_store([
            CompressedFrame(sequence_number=0, sample_index=960, payload=b"A", arrival_time=50.06),
        ])
        return await generate_ogg_opus_blob(
            store, "s1", 0, 960, log=make_logger(sink=lambda e: None), start_time=50.0,
        )

    pages = audio_pages(asyncio.run(scenario()))

    assert [body for _, _, body in pages] == [OPUS_SILENCE_FRAME] * 3 + [b"A"]
    assert pages[-1][1] == 4 * FRAME_SAMPLES
