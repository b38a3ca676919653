"""Speech-to-text collaborators: Whisper HTTP API or local faster-whisper."""

import logging
import threading
from typing import Optional

import httpx
import numpy as np
from faster_whisper import WhisperModel

from ..audio.capture import AudioArtifact
from ..audio.wav import decode_wav
from ..config import TranscriptionConfig
from ..errors import TranscriptionError

logger = logging.getLogger(__name__)

# faster-whisper expects 16 kHz mono float32 when given raw samples
WHISPER_SAMPLE_RATE = 16000

_MIME_TYPES = {
    ".wav": "audio/wav",
    ".m4a": "audio/mp4",
    ".mp3": "audio/mpeg",
}


def mime_type_for(filename: str) -> str:
    for suffix, mime in _MIME_TYPES.items():
        if filename.endswith(suffix):
            return mime
    return "audio/wav"


class Transcriber:
    """Converts an audio artifact to text."""

    def transcribe(self, artifact: AudioArtifact, language: Optional[str] = None) -> str:
        raise NotImplementedError

    def close(self) -> None:
        pass


class WhisperApiTranscriber(Transcriber):
    """Transcription through an OpenAI-compatible ``/audio/transcriptions`` endpoint."""

    def __init__(self, config: TranscriptionConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.model = config.model
        self._client = client or httpx.Client(timeout=config.timeout)

    def _url(self) -> str:
        return f"{self.config.api_url.rstrip('/')}/audio/transcriptions"

    def transcribe(self, artifact: AudioArtifact, language: Optional[str] = None) -> str:
        if not self.config.api_key:
            raise TranscriptionError("Transcription API key missing")

        language = language or self.config.language
        logger.debug(
            f"Starting transcription for {artifact.filename}, {len(artifact.data)} bytes"
        )

        files = {"file": (artifact.filename, artifact.data, mime_type_for(artifact.filename))}
        data = {"model": self.model}
        if language:
            data["language"] = language

        try:
            resp = self._client.post(
                self._url(),
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                files=files,
                data=data,
            )
        except httpx.HTTPError as e:
            logger.error(f"Transcription request failed: {e}")
            raise TranscriptionError(str(e) or type(e).__name__) from e

        if resp.is_error:
            raise TranscriptionError(f"HTTP {resp.status_code}: {resp.text}")

        try:
            payload = resp.json()
        except ValueError as e:
            raise TranscriptionError(f"Invalid response: {e}") from e

        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise TranscriptionError("Invalid response: missing 'text'")

        logger.info(f"Transcription successful: '{text[:50]}'")
        return text.strip()

    def close(self) -> None:
        self._client.close()


class LocalWhisperTranscriber(Transcriber):
    """On-device transcription using faster-whisper."""

    def __init__(self, config: TranscriptionConfig):
        self.config = config
        self.model_name = config.whisper_model
        self.device = config.whisper_device
        self.compute_type = config.whisper_compute_type

        self._model: Optional[WhisperModel] = None
        self._model_lock = threading.Lock()

    def _load_model(self) -> WhisperModel:
        """Load the Whisper model on first use."""
        with self._model_lock:
            if self._model is None:
                logger.info(f"Loading Whisper model: {self.model_name} on {self.device}")
                try:
                    self._model = WhisperModel(
                        self.model_name,
                        device=self.device,
                        compute_type=self.compute_type,
                    )
                except Exception as e:
                    logger.error(f"Failed to load Whisper model: {e}")
                    raise TranscriptionError(f"Failed to load Whisper model: {e}") from e
                logger.info("Whisper model loaded")
            return self._model

    @staticmethod
    def _to_float_audio(artifact: AudioArtifact) -> np.ndarray:
        audio = decode_wav(artifact.data).astype(np.float32) / 32768.0
        if artifact.sample_rate != WHISPER_SAMPLE_RATE and audio.size:
            duration = audio.size / artifact.sample_rate
            target = int(duration * WHISPER_SAMPLE_RATE)
            positions = np.linspace(0, audio.size - 1, num=target)
            audio = np.interp(positions, np.arange(audio.size), audio).astype(np.float32)
        return audio

    def transcribe(self, artifact: AudioArtifact, language: Optional[str] = None) -> str:
        model = self._load_model()
        audio = self._to_float_audio(artifact)

        try:
            segments, _info = model.transcribe(
                audio,
                beam_size=5,
                language=language or self.config.language or None,
                vad_filter=False,  # capture already gated on voice activity
            )
            text = " ".join(seg.text.strip() for seg in segments).strip()
        except Exception as e:
            logger.error(f"Transcription error: {e}")
            raise TranscriptionError(str(e)) from e

        logger.info(f"Transcribed: '{text[:50]}'")
        return text


def create_transcriber(config: TranscriptionConfig) -> Transcriber:
    """Build the transcriber selected by ``config.backend``."""
    if config.backend == "local":
        return LocalWhisperTranscriber(config)
    if config.backend == "api":
        return WhisperApiTranscriber(config)
    raise ValueError(f"Unknown transcription backend: {config.backend}")
