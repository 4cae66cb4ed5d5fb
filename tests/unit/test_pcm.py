# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np

from audio.frames import PCMFrame
from audio.pcm import int16_to_pcm16le, pcm16le_to_int16
from constants import PCM_FRAME_SAMPLES


def test_little_endian_decoding():
    samples = pcm16le_to_int16(b"\x01\x00\xff\xff\x00\x80")

    assert samples.dtype == np.int16
    assert samples.tolist() == [1, -1, -32768]


def test_odd_trailing_byte_is_dropped():
    samples = pcm16le_to_int16(b"\x10\x00\x20")
    assert samples.tolist() == [16]


def test_int16_back_to_bytes():
    raw = b"\x01\x00\xff\x7f"
    assert int16_to_pcm16le(pcm16le_to_int16(raw)) == raw


def test_pcm_frame_padding():
    short = PCMFrame(samples=np.array([5, -5, 7], dtype=np.int16))

    assert not short.is_full
    padded = short.padded()

    assert padded.is_full
    assert len(padded) == PCM_FRAME_SAMPLES
    assert padded.samples[:3].tolist() == [5, -5, 7]
    assert not padded.samples[3:].any()


def test_full_frame_padding_is_identity():
    full = PCMFrame(samples=np.ones(PCM_FRAME_SAMPLES, dtype=np.int16))
    assert full.padded() is full
