# backend/protocol/rtp.py
"""
RTP framing helpers for voice transport.

Fixed header (RFC 3550 §5.1), network byte order:
    1 byte   V(2) P(1) X(1) CC(4)
    1 byte   M(1) PT(7)
    2 bytes  sequence number (u16)
    4 bytes  timestamp / sample index (u32)
    4 bytes  SSRC (u32)
    CC * 4   CSRC list
    [X]      4-byte extension header + length * 4 bytes
    payload  (opaque Opus bytes)
    [P]      padding, last byte = padding length

Usage example:

    packet = decode_rtp_packet(datagram)

    result = check_sequence_gap(last_seq=prev_seq, current_seq=packet.sequence_number)
    if result.gap:
        log.warning(
            "SEQ_GAP_DETECTED",
            expected=result.expected,
            actual=result.actual,
            gap_size=result.gap_size,
        )
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional

from audio.frames import InboundPacket
from constants import (
    RTP_HEADER_BYTES,
    RTP_OPUS_PAYLOAD_TYPE,
    RTP_VERSION,
    SAMPLE_INDEX_MODULUS,
    SEQUENCE_MODULUS,
)


# -------------------------
# Exceptions
# -------------------------

class PacketProtocolError(Exception):
    """Base class for transport packet errors."""


class InvalidPacket(PacketProtocolError):
    """
    Raised when a datagram cannot be parsed as an RTP packet.

    Covers truncated headers, wrong version, CSRC/extension/padding
    lengths that run past the end of the datagram, and empty payloads.
    The packet is unsafe to process and must be dropped.
    """


_HEADER = struct.Struct(">BBHII")


# -------------------------
# Decode
# -------------------------

def decode_rtp_packet(datagram: bytes) -> InboundPacket:
    """
    Parse one RTP datagram into an InboundPacket.
    """
    if len(datagram) < RTP_HEADER_BYTES:
        raise InvalidPacket(
            f"RTP datagram length {len(datagram)} < {RTP_HEADER_BYTES}"
        )

    b0, _, seq, timestamp, ssrc = _HEADER.unpack_from(datagram, 0)

    version = b0 >> 6
    if version != RTP_VERSION:
        raise InvalidPacket(f"Unsupported RTP version: {version}")

    has_padding = bool(b0 & 0x20)
    has_extension = bool(b0 & 0x10)
    csrc_count = b0 & 0x0F

    offset = RTP_HEADER_BYTES + 4 * csrc_count
    if offset > len(datagram):
        raise InvalidPacket(f"CSRC list ({csrc_count}) overruns datagram")

    if has_extension:
        if offset + 4 > len(datagram):
            raise InvalidPacket("Extension header overruns datagram")
        ext_words = struct.unpack_from(">H", datagram, offset + 2)[0]
        offset += 4 + 4 * ext_words
        if offset > len(datagram):
            raise InvalidPacket("Extension body overruns datagram")

    end = len(datagram)
    if has_padding:
        pad = datagram[-1]
        if pad == 0 or end - pad < offset:
            raise InvalidPacket(f"Invalid padding length: {pad}")
        end -= pad

    payload = datagram[offset:end]
    if not payload:
        raise InvalidPacket("Empty RTP payload")

    return InboundPacket(
        ssrc=ssrc,
        sequence_number=seq,
        timestamp=timestamp,
        payload=bytes(payload),
    )


# -------------------------
# Encode
# -------------------------

def encode_rtp_packet(
    *,
    sequence_number: int,
    timestamp: int,
    ssrc: int,
    payload: bytes,
    payload_type: int = RTP_OPUS_PAYLOAD_TYPE,
    marker: bool = False,
) -> bytes:
    """
    Encode a minimal RTP packet (no CSRC, no extension, no padding).
    """
    if not 0 <= sequence_number < SEQUENCE_MODULUS:
        raise InvalidPacket(f"Invalid sequence number: {sequence_number}")
    if not 0 <= timestamp < SAMPLE_INDEX_MODULUS:
        raise InvalidPacket(f"Invalid timestamp: {timestamp}")
    if not 0 <= payload_type < 128:
        raise InvalidPacket(f"Invalid payload type: {payload_type}")
    if not payload:
        raise InvalidPacket("Empty RTP payload")

    b0 = RTP_VERSION << 6
    b1 = (0x80 if marker else 0) | payload_type
    return _HEADER.pack(b0, b1, sequence_number, timestamp, ssrc) + payload


# -------------------------
# Counter arithmetic
# -------------------------

def sample_delta(previous: int, current: int) -> int:
    """
    Signed distance from `previous` to `current` on the 32-bit sample
    timeline.

    A forward move across the 2**32 rollover is positive; anything more
    than half the range ahead is treated as a backwards move.
    """
    delta = (current - previous) % SAMPLE_INDEX_MODULUS
    if delta >= SAMPLE_INDEX_MODULUS // 2:
        delta -= SAMPLE_INDEX_MODULUS
    return delta


def is_seq_next(prev: int, current: int) -> bool:
    """
    Return True if `current` is the expected next sequence number
    after `prev`, accounting for 16-bit wraparound.
    """
    return current == (prev + 1) % SEQUENCE_MODULUS


@dataclass(frozen=True)
class SeqCheckResult:
    """
    Result of a sequence continuity check.
    """
    gap: bool
    expected: int
    actual: int

    @property
    def gap_size(self) -> int:
        """
        Number of packets skipped (0 if no gap).

        Handles wraparound; a late or duplicate packet reports the
        forward distance modulo 2**16.
        """
        if not self.gap:
            return 0
        return (self.actual - self.expected) % SEQUENCE_MODULUS


def check_sequence_gap(
    *,
    last_seq: Optional[int],
    current_seq: int,
) -> SeqCheckResult:
    """
    Check whether `current_seq` follows `last_seq`.

    Pure function; never raises.
    """
    if last_seq is None or is_seq_next(last_seq, current_seq):
        return SeqCheckResult(
            gap=False,
            expected=current_seq,
            actual=current_seq,
        )

    return SeqCheckResult(
        gap=True,
        expected=(last_seq + 1) % SEQUENCE_MODULUS,
        actual=current_seq,
    )
