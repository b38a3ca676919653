"""PCM16 mono WAV encoding with the canonical 44-byte header."""

import struct
from pathlib import Path

import numpy as np

HEADER_SIZE = 44
CHANNELS = 1
BITS_PER_SAMPLE = 16
PCM_FORMAT = 1

_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def wav_header(data_length: int, sample_rate: int) -> bytes:
    """Build the RIFF/WAVE header for ``data_length`` bytes of samples."""
    block_align = CHANNELS * BITS_PER_SAMPLE // 8
    byte_rate = sample_rate * block_align
    return _HEADER.pack(
        b"RIFF",
        data_length + 36,
        b"WAVE",
        b"fmt ",
        16,  # fmt chunk size for PCM
        PCM_FORMAT,
        CHANNELS,
        sample_rate,
        byte_rate,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        data_length,
    )


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """
    Serialize samples into a playable WAV byte string.

    Args:
        samples: Signed 16-bit mono samples
        sample_rate: Sample rate written into the header

    Returns:
        Header followed by little-endian sample bytes
    """
    payload = np.asarray(samples, dtype="<i2").tobytes()
    return wav_header(len(payload), sample_rate) + payload


def decode_wav(data: bytes) -> np.ndarray:
    """Read samples back by skipping the header."""
    payload = data[HEADER_SIZE:]
    usable = len(payload) - (len(payload) % 2)
    return np.frombuffer(payload[:usable], dtype="<i2").astype(np.int16)


def write_wav(path: str | Path, samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode samples and write them to ``path``. Returns the encoded bytes."""
    data = encode_wav(samples, sample_rate)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    return data
