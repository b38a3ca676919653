"""Error taxonomy for the capture loop and the processing pipeline."""

from enum import Enum


class FailureKind(str, Enum):
    """Category of a failed attempt, carried on failure snapshots."""
    INSUFFICIENT_AUDIO = "insufficient_audio"
    CAPTURE_FAULT = "capture_fault"
    TRANSCRIPTION = "transcription"
    CLASSIFICATION = "classification"
    PERSISTENCE_CONFLICT = "persistence_conflict"
    PERSISTENCE = "persistence"
    PROMPT_LOAD = "prompt_load"


class VoiceMemoError(Exception):
    """Base class for failures surfaced by capture and pipeline stages."""
    kind: FailureKind = FailureKind.CAPTURE_FAULT


class InsufficientAudioError(VoiceMemoError):
    """Too little audio was captured. A normal outcome, not a fault."""
    kind = FailureKind.INSUFFICIENT_AUDIO


class CaptureFault(VoiceMemoError):
    """The audio device or stream failed."""
    kind = FailureKind.CAPTURE_FAULT


class TranscriptionError(VoiceMemoError):
    kind = FailureKind.TRANSCRIPTION


class ClassificationError(VoiceMemoError):
    """The classifier failed or returned malformed output."""
    kind = FailureKind.CLASSIFICATION


class PersistenceError(VoiceMemoError):
    """Transport or authorization failure talking to the document store."""
    kind = FailureKind.PERSISTENCE


class PersistenceConflict(PersistenceError):
    """The document changed since it was fetched (stale version token)."""
    kind = FailureKind.PERSISTENCE_CONFLICT


class PromptLoadError(VoiceMemoError):
    """The remote instruction prompt could not be loaded. Never fatal."""
    kind = FailureKind.PROMPT_LOAD


class PipelineBusyError(RuntimeError):
    """A run is in flight, or a terminal state has not been reset yet."""
