"""
AUDIO CONSTANTS
---------------
Single source of truth for the fixed audio parameters shared by the inbound
(packet -> container) and outbound (speech -> frames) directions.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Tuple

# =============================================================================
# Audio Format (PCM16 stereo @ 48kHz, 20ms frames)
# =============================================================================

SAMPLE_RATE_HZ: Final[int] = 48_000
CHANNELS: Final[int] = 2
SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit, little-endian)
FRAME_MS: Final[int] = 20

# Per-channel samples in one frame; this is also the sample-index stride
FRAME_SAMPLES: Final[int] = (SAMPLE_RATE_HZ * FRAME_MS) // 1000
PCM_FRAME_SAMPLES: Final[int] = FRAME_SAMPLES * CHANNELS
PCM_FRAME_BYTES: Final[int] = PCM_FRAME_SAMPLES * SAMPLE_WIDTH_BYTES
FRAME_DURATION_S: Final[float] = FRAME_MS / 1000.0

# =============================================================================
# Ingress packet counters
# =============================================================================

SEQUENCE_MODULUS: Final[int] = 2**16
SAMPLE_INDEX_MODULUS: Final[int] = 2**32

RTP_VERSION: Final[int] = 2
RTP_HEADER_BYTES: Final[int] = 12
RTP_OPUS_PAYLOAD_TYPE: Final[int] = 0x78

# =============================================================================
# Backpressure
# =============================================================================

STREAM_QUEUE_CAPACITY: Final[int] = 100
PLAYBACK_STAGE_QUEUE_SIZE: Final[int] = 8
DECODER_READ_CHUNK_BYTES: Final[int] = PCM_FRAME_BYTES
TTS_STREAM_CHUNK_BYTES: Final[int] = 4096

# =============================================================================
# Ogg Opus container
# =============================================================================

# TOC 0xF8 = CELT-only fullband 20ms, mono, one frame; 0xFF 0xFE is the
# zero-energy frame body. Players decode it as 20ms of digital silence.
OPUS_SILENCE_FRAME: Final[bytes] = b"\xf8\xff\xfe"

OPUS_PRE_SKIP: Final[int] = 0
OPUS_VENDOR: Final[bytes] = b"voice-packet-pipeline"

# Longest run of synthesized silence for one gap (60 s). A larger forward
# jump is a discontinuity: the next real frame follows without fill.
MAX_SILENCE_FILL_FRAMES: Final[int] = 3000

OGG_CAPTURE_PATTERN: Final[bytes] = b"OggS"
OGG_MAX_SEGMENT: Final[int] = 255
OGG_CRC_POLYNOMIAL: Final[int] = 0x04C11DB7

# Page header_type flags
OGG_FLAG_BOS: Final[int] = 0x02
OGG_FLAG_EOS: Final[int] = 0x04

# =============================================================================
# Playback decoder (ffmpeg)
# =============================================================================

DECODER_LOW_LATENCY_ARGS: Final[Tuple[str, ...]] = (
    "-fflags", "nobuffer+flush_packets",
    "-flags", "low_delay",
    "-strict", "experimental",
    "-probesize", "32",
    "-analyzeduration", "0",
)

# =============================================================================
# Observability
# =============================================================================

ENCODER_PROGRESS_LOG_EVERY: Final[int] = 100

# =============================================================================
# Helper Functions
# =============================================================================

def frames_to_seconds(num_frames: int) -> float:
    """
    Convert a number of 20ms frames to duration in seconds.

    Non-positive input returns 0.0.
    """
    if num_frames <= 0:
        return 0.0
    return num_frames * FRAME_DURATION_S


def samples_to_seconds(num_samples: int) -> float:
    """Convert per-channel samples at SAMPLE_RATE_HZ to seconds."""
    if num_samples <= 0:
        return 0.0
    return num_samples / SAMPLE_RATE_HZ


# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class AudioFormat:
    """
    Immutable bundle describing the PCM audio format.

    This is a convenience wrapper for passing format metadata around;
    it is NOT a second source of truth.
    """
    sample_rate_hz: int = SAMPLE_RATE_HZ
    channels: int = CHANNELS
    sample_width_bytes: int = SAMPLE_WIDTH_BYTES
    frame_ms: int = FRAME_MS

    @property
    def samples_per_frame(self) -> int:
        """Return number of per-channel samples per frame."""
        return (self.sample_rate_hz * self.frame_ms) // 1000

    @property
    def bytes_per_frame(self) -> int:
        """Return number of interleaved PCM bytes per frame."""
        return self.samples_per_frame * self.channels * self.sample_width_bytes


AUDIO_FORMAT: Final[AudioFormat] = AudioFormat()
