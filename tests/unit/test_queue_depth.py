# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import pytest

from audio.frames import CompressedFrame
from audio.queues import StreamFrameQueue
from constants import FRAME_DURATION_S, STREAM_QUEUE_CAPACITY


def make_frame(seq: int) -> CompressedFrame:
    return CompressedFrame(
        sequence_number=seq,
        sample_index=seq * 960,
        payload=b"\xfc\x00",
        arrival_time=0.0,
    )


def test_default_capacity_is_100_frames():
    assert StreamFrameQueue().capacity == STREAM_QUEUE_CAPACITY == 100


def test_invalid_capacity():
    with pytest.raises(ValueError):
        StreamFrameQueue(capacity=0)


# ---------------------------------------------------------------------
# depth_seconds math
# ---------------------------------------------------------------------

def test_depth_seconds_exact():
    q = StreamFrameQueue(capacity=10)

    q.offer(make_frame(1))
    q.offer(make_frame(2))
    q.offer(make_frame(3))

    assert q.depth_seconds() == 3 * FRAME_DURATION_S


# ---------------------------------------------------------------------
# Overflow behavior
# ---------------------------------------------------------------------

def test_overflow_drops_newest():
    q = StreamFrameQueue(capacity=2)

    assert q.offer(make_frame(1))
    assert q.offer(make_frame(2))
    assert not q.offer(make_frame(3))

    assert len(q) == 2
    assert q.drops.overflow == 1

    async def drain() -> list[int]:
        q.close()
        out = []
        while (frame := await q.get()) is not None:
            out.append(frame.sequence_number)
        return out

    assert asyncio.run(drain()) == [1, 2]


def test_offer_after_close_is_counted():
    q = StreamFrameQueue(capacity=2)
    q.close()

    assert not q.offer(make_frame(1))
    assert q.drops.after_close == 1
    assert q.total_drops() == 1


def test_close_is_accepted_when_full():
    q = StreamFrameQueue(capacity=1)
    q.offer(make_frame(1))

    q.close()

    async def drain() -> list[object]:
        return [await q.get(), await q.get()]

    first, second = asyncio.run(drain())
    assert first is not None and first.sequence_number == 1
    assert second is None


def test_get_waits_for_offer():
    async def scenario() -> int:
        q = StreamFrameQueue(capacity=4)
        getter = asyncio.create_task(q.get())
        await asyncio.sleep(0)
        assert not getter.done()

        q.offer(make_frame(7))
        frame = await asyncio.wait_for(getter, timeout=1)
        assert frame is not None
        return frame.sequence_number

    assert asyncio.run(scenario()) == 7


def test_snapshot_fields():
    q = StreamFrameQueue(capacity=1)
    q.offer(make_frame(1))
    q.offer(make_frame(2))

    snap = q.snapshot()

    assert snap["frames"] == 1
    assert snap["capacity"] == 1
    assert snap["dropped_overflow"] == 1
    assert snap["dropped_total"] == 1


def test_clear_does_not_count_drops():
    q = StreamFrameQueue(capacity=3)
    q.offer(make_frame(1))
    q.clear()

    assert q.is_empty()
    assert q.total_drops() == 0
