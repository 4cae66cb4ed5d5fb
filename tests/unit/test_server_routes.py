# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import socket
import time

from fastapi.testclient import TestClient

from audio.frames import CompressedFrame, InboundPacket
from config import AppConfig
from observability.logger import make_logger
from protocol.rtp import encode_rtp_packet
from server.app import create_app
from storage.packets import InMemoryPacketStore, StorageError, StreamRecord


def seeded_store() -> InMemoryPacketStore:
    store = InMemoryPacketStore()

    async def seed() -> None:
        await store.create_stream(StreamRecord("s1", 1, "call", "chan", 0, 0))
        for i, index in enumerate([0, 960, 1920, 5760]):
            await store.save_frame(
                "s1",
                CompressedFrame(sequence_number=i, sample_index=index, payload=b"\xfc\x01", arrival_time=0.0),
            )

    asyncio.run(seed())
    return store


def make_client(store: InMemoryPacketStore) -> TestClient:
    app = create_app(config=AppConfig(), store=store, log=make_logger(sink=lambda e: None))
    return TestClient(app)


def test_health():
    client = make_client(InMemoryPacketStore())
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_audio_download():
    client = make_client(seeded_store())

    response = client.get("/streams/s1/audio.ogg", params={"start": 0, "end": 5760})

    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/ogg"
    assert response.headers["content-disposition"] == 'attachment; filename="s1.ogg"'
    # 2 header pages + 4 real + 3 silence
    assert response.content.startswith(b"OggS")
    assert response.content.count(b"OpusHead") == 1


def test_inverted_range_is_bad_request():
    client = make_client(seeded_store())
    response = client.get("/streams/s1/audio.ogg", params={"start": 960, "end": 0})
    assert response.status_code == 400


def test_negative_range_is_bad_request():
    client = make_client(seeded_store())
    response = client.get("/streams/s1/audio.ogg", params={"start": -1, "end": 960})
    assert response.status_code == 400


def test_missing_parameters_are_rejected():
    client = make_client(seeded_store())
    response = client.get("/streams/s1/audio.ogg")
    assert response.status_code == 422


def test_empty_range_is_not_found():
    client = make_client(seeded_store())
    response = client.get("/streams/s1/audio.ogg", params={"start": 100000, "end": 200000})
    assert response.status_code == 404


def test_unknown_stream_is_not_found():
    client = make_client(seeded_store())
    response = client.get("/streams/nope/audio.ogg", params={"start": 0, "end": 960})
    assert response.status_code == 404


class BrokenStore(InMemoryPacketStore):
    async def fetch_frames(self, stream_id: str, start_sample: int, end_sample: int) -> list[CompressedFrame]:
        raise StorageError("connection lost")


def test_store_failure_is_server_error():
    client = make_client(BrokenStore())
    response = client.get("/streams/s1/audio.ogg", params={"start": 0, "end": 960})

    assert response.status_code == 500
    assert not response.content.startswith(b"OggS")


def test_start_time_adds_leading_silence():
    client = make_client(seeded_store())

    plain = client.get("/streams/s1/audio.ogg", params={"start": 0, "end": 960})
    padded = client.get("/streams/s1/audio.ogg", params={"start": 0, "end": 960, "start_time": -0.04})

    assert plain.status_code == padded.status_code == 200
    assert padded.content.count(b"OggS") == plain.content.count(b"OggS") + 2


# ---------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------

def test_router_is_built_from_config():
    config = AppConfig(stream_queue_capacity=7, recognition_locales=("en-US",))
    store = InMemoryPacketStore()
    app = create_app(config=config, store=store, log=make_logger(sink=lambda e: None))

    router = app.state.router

    async def scenario() -> int:
        await router.ingest_packet(
            InboundPacket(ssrc=1, sequence_number=1, timestamp=960, payload=b"\xfc"),
            call_id="call",
            channel_id="chan",
        )
        capacity = router.registry.all()[0].queue.capacity
        await router.close()
        return capacity

    assert asyncio.run(scenario()) == 7


def test_rtp_listener_feeds_the_download_route():
    store = InMemoryPacketStore()
    config = AppConfig(rtp_host="127.0.0.1", rtp_port=0, rtp_call_id="call", rtp_channel_id="chan")
    app = create_app(config=config, store=store, log=make_logger(sink=lambda e: None))

    with TestClient(app) as client:
        host, port = app.state.rtp_ingress.address
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            for seq in (1, 2):
                datagram = encode_rtp_packet(
                    sequence_number=seq, timestamp=seq * 960, ssrc=0xAA, payload=b"\xfc\x01",
                )
                sock.sendto(datagram, (host, port))

        stream_id = None
        for _ in range(200):
            streams = app.state.router.registry.all()
            if streams and store.frame_count(streams[0].id) == 2:
                stream_id = streams[0].id
                break
            time.sleep(0.01)

        assert stream_id is not None
        response = client.get(f"/streams/{stream_id}/audio.ogg", params={"start": 0, "end": 1920})

    assert response.status_code == 200
    assert response.content.startswith(b"OggS")
    assert len(app.state.router.registry) == 0
