"""Tests for the transcription services."""

from unittest.mock import MagicMock, patch

import httpx
import numpy as np
import pytest

from voicememo.audio.capture import AudioArtifact
from voicememo.audio.wav import encode_wav
from voicememo.config import TranscriptionConfig
from voicememo.errors import TranscriptionError
from voicememo.services.transcriber import (
    LocalWhisperTranscriber,
    WhisperApiTranscriber,
    create_transcriber,
    mime_type_for,
)


@pytest.fixture
def artifact():
    samples = np.full(16000, 1000, dtype=np.int16)
    return AudioArtifact(
        data=encode_wav(samples, 16000),
        sample_count=len(samples),
        sample_rate=16000,
        path="/tmp/recording_1_1.wav",
    )


@pytest.fixture
def api_config():
    return TranscriptionConfig(
        backend="api",
        api_url="https://api.example.com/v1/",
        api_key="sk-test",
        language="ko",
    )


def make_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestMimeType:
    """Tests for mime_type_for function."""

    def test_known_types(self):
        assert mime_type_for("a.wav") == "audio/wav"
        assert mime_type_for("a.m4a") == "audio/mp4"
        assert mime_type_for("a.mp3") == "audio/mpeg"

    def test_unknown_defaults_to_wav(self):
        assert mime_type_for("a.bin") == "audio/wav"


class TestWhisperApiTranscriber:
    """Tests for WhisperApiTranscriber class."""

    def test_transcribe(self, api_config, artifact):
        """Test a multipart upload returns the stripped text."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"text": "  buy milk  "})

        transcriber = WhisperApiTranscriber(api_config, client=make_client(handler))
        assert transcriber.transcribe(artifact) == "buy milk"

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.example.com/v1/audio/transcriptions"
        assert request.headers["Authorization"] == "Bearer sk-test"

        body = request.read()
        assert b'name="model"' in body
        assert b"whisper-1" in body
        assert b'name="language"' in body
        assert b'filename="recording_1_1.wav"' in body
        assert artifact.data[:44] in body

    def test_language_override(self, api_config, artifact):
        """Test an explicit language replaces the configured one."""
        bodies = []

        def handler(request):
            bodies.append(request.read())
            return httpx.Response(200, json={"text": "hello"})

        transcriber = WhisperApiTranscriber(api_config, client=make_client(handler))
        transcriber.transcribe(artifact, language="en")
        assert b"\r\n\r\nen\r\n" in bodies[0]

    def test_http_error(self, api_config, artifact):
        """Test non-2xx responses carry the status and body."""
        def handler(request):
            return httpx.Response(401, text="invalid api key")

        transcriber = WhisperApiTranscriber(api_config, client=make_client(handler))
        with pytest.raises(TranscriptionError, match="HTTP 401: invalid api key"):
            transcriber.transcribe(artifact)

    def test_transport_error(self, api_config, artifact):
        """Test connection failures become transcription errors."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        transcriber = WhisperApiTranscriber(api_config, client=make_client(handler))
        with pytest.raises(TranscriptionError, match="connection refused"):
            transcriber.transcribe(artifact)

    @pytest.mark.parametrize("response", [
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"result": "x"}),
        httpx.Response(200, json=["x"]),
    ])
    def test_invalid_response(self, api_config, artifact, response):
        """Test malformed success payloads are errors."""
        transcriber = WhisperApiTranscriber(api_config, client=make_client(lambda r: response))
        with pytest.raises(TranscriptionError, match="Invalid response"):
            transcriber.transcribe(artifact)

    def test_missing_api_key(self, artifact):
        """Test no request is made without credentials."""
        handler = MagicMock()
        transcriber = WhisperApiTranscriber(TranscriptionConfig(), client=make_client(handler))
        with pytest.raises(TranscriptionError, match="key missing"):
            transcriber.transcribe(artifact)
        handler.assert_not_called()


class TestLocalWhisperTranscriber:
    """Tests for LocalWhisperTranscriber class."""

    @pytest.fixture
    def local_config(self):
        return TranscriptionConfig(backend="local", whisper_model="tiny", language="en")

    @patch("voicememo.services.transcriber.WhisperModel")
    def test_lazy_model_load(self, mock_model_cls, local_config):
        """Test the model is loaded on first transcription only."""
        transcriber = LocalWhisperTranscriber(local_config)
        mock_model_cls.assert_not_called()

        mock_model_cls.return_value.transcribe.return_value = (iter([]), MagicMock())
        transcriber._load_model()
        transcriber._load_model()
        mock_model_cls.assert_called_once_with("tiny", device="cpu", compute_type="int8")

    @patch("voicememo.services.transcriber.WhisperModel")
    def test_transcribe(self, mock_model_cls, local_config, artifact):
        """Test segments are joined into one string."""
        segments = [MagicMock(text=" buy "), MagicMock(text="milk ")]
        mock_model = mock_model_cls.return_value
        mock_model.transcribe.return_value = (iter(segments), MagicMock())

        transcriber = LocalWhisperTranscriber(local_config)
        assert transcriber.transcribe(artifact) == "buy milk"

        audio = mock_model.transcribe.call_args.args[0]
        assert audio.dtype == np.float32
        assert len(audio) == 16000
        assert audio[0] == pytest.approx(1000 / 32768)
        assert mock_model.transcribe.call_args.kwargs["language"] == "en"

    @patch("voicememo.services.transcriber.WhisperModel")
    def test_resamples_to_16k(self, mock_model_cls, local_config):
        """Test other sample rates are resampled before inference."""
        samples = np.zeros(44100, dtype=np.int16)
        artifact = AudioArtifact(
            data=encode_wav(samples, 44100), sample_count=44100, sample_rate=44100
        )
        mock_model = mock_model_cls.return_value
        mock_model.transcribe.return_value = (iter([]), MagicMock())

        LocalWhisperTranscriber(local_config).transcribe(artifact)
        assert len(mock_model.transcribe.call_args.args[0]) == 16000

    @patch("voicememo.services.transcriber.WhisperModel")
    def test_model_load_failure(self, mock_model_cls, local_config, artifact):
        """Test model load errors are transcription errors."""
        mock_model_cls.side_effect = RuntimeError("no such model")
        with pytest.raises(TranscriptionError, match="no such model"):
            LocalWhisperTranscriber(local_config).transcribe(artifact)

    @patch("voicememo.services.transcriber.WhisperModel")
    def test_inference_failure(self, mock_model_cls, local_config, artifact):
        """Test inference errors are transcription errors."""
        mock_model_cls.return_value.transcribe.side_effect = RuntimeError("cuda oom")
        with pytest.raises(TranscriptionError, match="cuda oom"):
            LocalWhisperTranscriber(local_config).transcribe(artifact)


class TestCreateTranscriber:
    """Tests for create_transcriber function."""

    def test_api_backend(self):
        transcriber = create_transcriber(TranscriptionConfig(backend="api"))
        assert isinstance(transcriber, WhisperApiTranscriber)
        transcriber.close()

    def test_local_backend(self):
        assert isinstance(
            create_transcriber(TranscriptionConfig(backend="local")), LocalWhisperTranscriber
        )

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_transcriber(TranscriptionConfig(backend="carrier-pigeon"))
