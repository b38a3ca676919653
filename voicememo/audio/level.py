"""Loudness measurement for blocks of PCM16 samples."""

import math
from dataclasses import dataclass

import numpy as np

# Largest magnitude representable by a signed 16-bit sample
INT16_MAGNITUDE = 32768.0

DEFAULT_SILENCE_THRESHOLD_DB = -40.0


@dataclass(frozen=True)
class LevelReading:
    """Loudness of one audio block."""
    rms: float
    decibels: float
    is_silence: bool

    def to_dict(self) -> dict:
        # JSON has no infinity; digital silence is reported as null
        decibels = self.decibels if math.isfinite(self.decibels) else None
        return {"rms": self.rms, "decibels": decibels, "is_silence": self.is_silence}


def compute_rms(block: np.ndarray) -> float:
    """
    Root mean square of a block, normalized to 0.0-1.0.

    Args:
        block: Signed 16-bit samples

    Returns:
        RMS value, 0.0 for an empty block
    """
    if block.size == 0:
        return 0.0
    normalized = block.astype(np.float64) / INT16_MAGNITUDE
    return float(np.sqrt(np.mean(normalized * normalized)))


def rms_to_decibels(rms: float) -> float:
    """Convert an RMS value to dBFS; silence maps to negative infinity."""
    if rms > 0:
        return 20.0 * math.log10(rms)
    return float("-inf")


def compute_level(
    block: np.ndarray,
    threshold_db: float = DEFAULT_SILENCE_THRESHOLD_DB,
) -> LevelReading:
    """Measure a block and classify it as silence or not."""
    rms = compute_rms(block)
    decibels = rms_to_decibels(rms)
    return LevelReading(rms=rms, decibels=decibels, is_silence=decibels < threshold_db)
