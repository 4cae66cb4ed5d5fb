# pylint: disable=missing-module-docstring,missing-function-docstring

import struct

import pytest

from protocol.rtp import (
    InvalidPacket,
    PacketProtocolError,
    check_sequence_gap,
    decode_rtp_packet,
    encode_rtp_packet,
    is_seq_next,
    sample_delta,
)


# ---------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------

def test_encode_decode_basic():
    datagram = encode_rtp_packet(
        sequence_number=42,
        timestamp=96000,
        ssrc=0xDEADBEEF,
        payload=b"\xfc\x01\x02",
    )

    packet = decode_rtp_packet(datagram)

    assert packet.ssrc == 0xDEADBEEF
    assert packet.sequence_number == 42
    assert packet.timestamp == 96000
    assert packet.payload == b"\xfc\x01\x02"


def test_decode_skips_csrc_extension_and_padding():
    b0 = (2 << 6) | 0x20 | 0x10 | 1  # padding, extension, one CSRC
    header = struct.pack(">BBHII", b0, 0x78, 7, 1920, 99)
    csrc = struct.pack(">I", 1234)
    extension = struct.pack(">HH", 0xBEDE, 1) + b"\x00" * 4
    payload = b"opus"
    padding = b"\x00\x00\x03"

    packet = decode_rtp_packet(header + csrc + extension + payload + padding)

    assert packet.payload == b"opus"
    assert packet.sequence_number == 7
    assert packet.timestamp == 1920


def test_decode_rejects_short_datagram():
    with pytest.raises(InvalidPacket):
        decode_rtp_packet(b"\x80\x78\x00")


def test_decode_rejects_wrong_version():
    datagram = struct.pack(">BBHII", 1 << 6, 0x78, 1, 0, 1) + b"x"
    with pytest.raises(InvalidPacket):
        decode_rtp_packet(datagram)


def test_decode_rejects_empty_payload():
    datagram = struct.pack(">BBHII", 2 << 6, 0x78, 1, 0, 1)
    with pytest.raises(PacketProtocolError):
        decode_rtp_packet(datagram)


def test_decode_rejects_overrunning_csrc_list():
    datagram = struct.pack(">BBHII", (2 << 6) | 4, 0x78, 1, 0, 1) + b"abcd"
    with pytest.raises(InvalidPacket):
        decode_rtp_packet(datagram)


def test_encode_rejects_out_of_range_counters():
    with pytest.raises(InvalidPacket):
        encode_rtp_packet(sequence_number=70000, timestamp=0, ssrc=1, payload=b"x")
    with pytest.raises(InvalidPacket):
        encode_rtp_packet(sequence_number=0, timestamp=2**32, ssrc=1, payload=b"x")


# ---------------------------------------------------------------------
# Counter arithmetic
# ---------------------------------------------------------------------

def test_sample_delta_forward_and_backward():
    assert sample_delta(960, 1920) == 960
    assert sample_delta(1920, 960) == -960


def test_sample_delta_across_rollover():
    assert sample_delta(2**32 - 960, 0) == 960
    assert sample_delta(2**32 - 480, 480) == 960


def test_sequence_wraparound():
    assert is_seq_next(65535, 0)
    assert not is_seq_next(65535, 1)


def test_sequence_gap_detected_with_size():
    result = check_sequence_gap(last_seq=10, current_seq=14)

    assert result.gap
    assert result.expected == 11
    assert result.actual == 14
    assert result.gap_size == 3


def test_first_packet_never_reports_gap():
    result = check_sequence_gap(last_seq=None, current_seq=500)
    assert not result.gap
    assert result.gap_size == 0
