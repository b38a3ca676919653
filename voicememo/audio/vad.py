"""Energy-based voice activity gate with silence hysteresis."""

import logging
from typing import Optional

from ..config import AudioConfig
from .level import LevelReading

logger = logging.getLogger(__name__)


class VoiceActivityGate:
    """Decides when a capture session should stop.

    A session stops once silence has lasted ``silence_duration_ms`` without
    interruption and at least ``min_recording_ms`` has been recorded. Any
    non-silent reading ends the current silence run.
    """

    def __init__(self, config: AudioConfig):
        self.config = config
        self.silence_duration_ms = config.silence_duration_ms
        self.min_recording_ms = config.min_recording_ms

        # Elapsed time at which the current silence run began, None when not silent
        self._silence_start_ms: Optional[float] = None

    def reset(self) -> None:
        """Reset gate state for a new session."""
        self._silence_start_ms = None

    def update(self, reading: LevelReading, elapsed_ms: float) -> bool:
        """
        Feed one level reading.

        Args:
            reading: Level of the latest block
            elapsed_ms: Time since the session started

        Returns:
            True if the capture should stop now
        """
        if not reading.is_silence:
            self._silence_start_ms = None
            return False

        if self._silence_start_ms is None:
            self._silence_start_ms = elapsed_ms

        silence_ms = elapsed_ms - self._silence_start_ms
        if silence_ms >= self.silence_duration_ms and elapsed_ms >= self.min_recording_ms:
            logger.debug(f"Auto-stopping after {silence_ms:.0f}ms of silence")
            return True

        return False

    @property
    def silence_start_ms(self) -> Optional[float]:
        """Start of the active silence run, if any."""
        return self._silence_start_ms

    @property
    def in_silence(self) -> bool:
        """Check if a silence run is active."""
        return self._silence_start_ms is not None
