"""
Ogg Opus page writer.

Container layout (RFC 3533 pages, RFC 7845 Opus mapping):

    page 0   BOS, granule 0   "OpusHead" identification header
    page 1        granule 0   "OpusTags" comment header
    page 2.. one Opus packet per page, granule = end sample of the packet
    last     EOS flag set on the final audio page

Page header, little-endian:
    4 bytes  "OggS"
    1 byte   version (0)
    1 byte   header_type (0x01 continued, 0x02 BOS, 0x04 EOS)
    8 bytes  granule position
    4 bytes  bitstream serial
    4 bytes  page sequence number
    4 bytes  CRC-32 (poly 0x04C11DB7, init 0, unreflected, field zeroed)
    1 byte   segment count
    N bytes  lacing values

The last audio page is held back until the next packet (or close()) so it
can be emitted with the EOS flag without seeking the sink.
"""

from __future__ import annotations

import random
import struct
from typing import Protocol

from constants import (
    CHANNELS,
    FRAME_SAMPLES,
    OGG_CAPTURE_PATTERN,
    OGG_CRC_POLYNOMIAL,
    OGG_FLAG_BOS,
    OGG_FLAG_EOS,
    OGG_MAX_SEGMENT,
    OPUS_PRE_SKIP,
    OPUS_VENDOR,
    SAMPLE_RATE_HZ,
)


# -------------------------
# Exceptions
# -------------------------

class ContainerError(Exception):
    """Base class for container write/finalize errors."""


class StreamClosed(ContainerError):
    """Raised when writing to a container that has already been closed."""


# -------------------------
# CRC
# -------------------------

def _build_crc_table() -> tuple[int, ...]:
    table = []
    for i in range(256):
        crc = i << 24
        for _ in range(8):
            if crc & 0x80000000:
                crc = ((crc << 1) ^ OGG_CRC_POLYNOMIAL) & 0xFFFFFFFF
            else:
                crc = (crc << 1) & 0xFFFFFFFF
        table.append(crc)
    return tuple(table)


_CRC_TABLE = _build_crc_table()


def ogg_crc32(data: bytes) -> int:
    crc = 0
    for byte in data:
        crc = ((crc << 8) & 0xFFFFFFFF) ^ _CRC_TABLE[((crc >> 24) & 0xFF) ^ byte]
    return crc


# -------------------------
# Page construction
# -------------------------

_PAGE_HEADER = struct.Struct("<4sBBqIII")


def lacing_values(length: int) -> bytes:
    """
    Segment table for one packet of `length` bytes.

    A packet whose length is a multiple of 255 ends with a 0 lacing value.
    """
    full, rest = divmod(length, OGG_MAX_SEGMENT)
    return bytes([OGG_MAX_SEGMENT] * full + [rest])


def build_page(
    payload: bytes,
    *,
    header_type: int,
    granule: int,
    serial: int,
    page_sequence: int,
) -> bytes:
    """
    Build one Ogg page carrying a single complete packet.

    An empty payload produces a page with no segments (no packet).
    """
    segments = lacing_values(len(payload)) if payload else b""
    if len(segments) > 255:
        raise ContainerError(
            f"Packet of {len(payload)} bytes does not fit in one page"
        )

    header = _PAGE_HEADER.pack(
        OGG_CAPTURE_PATTERN,
        0,
        header_type,
        granule,
        serial,
        page_sequence,
        0,  # CRC placeholder
    )
    page = bytearray(header + bytes([len(segments)]) + segments + payload)
    struct.pack_into("<I", page, 22, ogg_crc32(bytes(page)))
    return bytes(page)


def opus_id_header(*, channels: int, sample_rate: int, pre_skip: int) -> bytes:
    return struct.pack(
        "<8sBBHIhB",
        b"OpusHead",
        1,            # version
        channels,
        pre_skip,
        sample_rate,  # original input rate, informational
        0,            # output gain (Q7.8 dB)
        0,            # channel mapping family: mono/stereo, no table
    )


def opus_comment_header(*, vendor: bytes) -> bytes:
    return (
        b"OpusTags"
        + struct.pack("<I", len(vendor))
        + vendor
        + struct.pack("<I", 0)  # user comment list length
    )


# -------------------------
# Writer
# -------------------------

class ByteSink(Protocol):
    def write(self, data: bytes, /) -> object: ...


class OggOpusWriter:
    """
    Streaming Ogg Opus writer for already-encoded Opus packets.

    Owned by exactly one encoder; not safe for concurrent use.
    """

    def __init__(
        self,
        sink: ByteSink,
        *,
        sample_rate: int = SAMPLE_RATE_HZ,
        channels: int = CHANNELS,
        serial: int | None = None,
        pre_skip: int = OPUS_PRE_SKIP,
    ) -> None:
        self._sink = sink
        self._serial = random.getrandbits(32) if serial is None else serial
        self._pre_skip = pre_skip
        self._page_sequence = 0
        self._granule = 0
        self._held: tuple[bytes, int] | None = None
        self._packets = 0
        self._closed = False

        self._emit(
            opus_id_header(
                channels=channels,
                sample_rate=sample_rate,
                pre_skip=pre_skip,
            ),
            header_type=OGG_FLAG_BOS,
            granule=0,
        )
        self._emit(opus_comment_header(vendor=OPUS_VENDOR), header_type=0, granule=0)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def serial(self) -> int:
        return self._serial

    @property
    def granule(self) -> int:
        """Granule position of the most recent audio page."""
        return self._granule

    @property
    def packets_written(self) -> int:
        return self._packets

    @property
    def closed(self) -> bool:
        return self._closed

    def write_packet(self, payload: bytes, *, position: int) -> None:
        """
        Append one Opus packet.

        Args:
            payload: one complete Opus packet (opaque).
            position: start sample of the packet relative to the first
                packet of this container, on an unwrapped timeline.
        """
        if self._closed:
            raise StreamClosed("stream closed")
        if not payload:
            raise ContainerError("empty Opus packet")

        granule = max(self._pre_skip + position + FRAME_SAMPLES, self._granule)

        self._release_held(header_type=0)
        self._held = (payload, granule)
        self._granule = granule
        self._packets += 1

    def close(self) -> None:
        """
        Emit the final page with the EOS flag.

        Safe to call more than once; later calls do nothing.
        """
        if self._closed:
            return
        self._closed = True

        if self._held is None:
            # No audio: terminate the logical stream with an empty page
            self._emit(b"", header_type=OGG_FLAG_EOS, granule=self._granule)
        else:
            self._release_held(header_type=OGG_FLAG_EOS)

        flush = getattr(self._sink, "flush", None)
        if callable(flush):
            flush()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _release_held(self, *, header_type: int) -> None:
        if self._held is None:
            return
        payload, granule = self._held
        self._held = None
        self._emit(payload, header_type=header_type, granule=granule)

    def _emit(self, payload: bytes, *, header_type: int, granule: int) -> None:
        page = build_page(
            payload,
            header_type=header_type,
            granule=granule,
            serial=self._serial,
            page_sequence=self._page_sequence,
        )
        self._page_sequence += 1
        self._sink.write(page)
