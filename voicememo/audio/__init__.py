"""Audio components for voice-activity-gated utterance capture."""

from .capture import AudioArtifact, CaptureLoop, MicrophoneSource
from .level import LevelReading, compute_level
from .vad import VoiceActivityGate
from .wav import decode_wav, encode_wav

__all__ = [
    "AudioArtifact",
    "CaptureLoop",
    "MicrophoneSource",
    "LevelReading",
    "compute_level",
    "VoiceActivityGate",
    "decode_wav",
    "encode_wav",
]
