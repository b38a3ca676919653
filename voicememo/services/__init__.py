"""Clients for the transcription, classification and document services."""

from .classifier import IntentClassifier
from .document import DocumentStore, RemoteDocument
from .transcriber import (
    LocalWhisperTranscriber,
    Transcriber,
    WhisperApiTranscriber,
    create_transcriber,
)

__all__ = [
    "IntentClassifier",
    "DocumentStore",
    "RemoteDocument",
    "LocalWhisperTranscriber",
    "Transcriber",
    "WhisperApiTranscriber",
    "create_transcriber",
]
