"""PCM conversion utilities."""
import numpy as np
import numpy.typing as npt


def pcm16le_to_int16(pcm_bytes: bytes) -> npt.NDArray[np.int16]:
    """
    Convert interleaved PCM16 little-endian bytes to an int16 array.

    A trailing odd byte cannot form a sample and is dropped.
    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    # "<i2" pins little-endian regardless of host; astype gives native int16
    return np.frombuffer(pcm_bytes, dtype="<i2").astype(np.int16)


def int16_to_pcm16le(samples: npt.NDArray[np.int16]) -> bytes:
    """Inverse of pcm16le_to_int16."""
    return np.asarray(samples, dtype="<i2").tobytes()
