"""Pytest configuration and shared fixtures."""

import tempfile
from datetime import datetime
from pathlib import Path

import numpy as np
import pytest

from voicememo.errors import ClassificationError, PersistenceConflict, PromptLoadError
from voicememo.pipeline.record import Record, format_entry


# ==================== Path Fixtures ====================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir):
    """Create a temporary config file."""
    config_path = temp_dir / "settings.yaml"
    config_content = """
audio:
  device: "default"
  sample_rate: 16000
  silence_duration_ms: 3000
  artifact_dir: "{artifact_dir}"

transcription:
  backend: "local"
  whisper_model: "tiny"
  language: "en"

classifier:
  api_key: "gemini-key"
  temperature: 0.2

document:
  owner: "alice"
  repo: "notes"
  file_path: "inbox.md"

web:
  port: 9090

logging:
  level: "DEBUG"
  file: null
""".format(artifact_dir=str(temp_dir / "recordings"))

    config_path.write_text(config_content)
    return config_path


# ==================== Audio Fixtures ====================

@pytest.fixture
def audio_config(temp_dir):
    """Create a test audio config."""
    from voicememo.config import AudioConfig
    return AudioConfig(
        sample_rate=16000,
        tick_interval_ms=50,
        silence_threshold_db=-40.0,
        silence_duration_ms=5000,
        min_recording_ms=1000,
        artifact_dir=str(temp_dir / "recordings"),
    )


@pytest.fixture
def loud_block():
    """50ms square wave at half scale (rms 0.5, about -6 dB)."""
    block = np.full(800, 16384, dtype=np.int16)
    block[::2] = -16384
    return block


@pytest.fixture
def silent_block():
    """50ms of digital silence."""
    return np.zeros(800, dtype=np.int16)


class VirtualClock:
    """Deterministic monotonic clock, stored in microseconds."""

    def __init__(self):
        self._us = 0

    def __call__(self) -> float:
        return self._us / 1_000_000

    def advance(self, seconds: float) -> None:
        self._us += int(round(seconds * 1_000_000))

    def sleep(self, seconds: float) -> None:
        self.advance(seconds)


class ScriptedSource:
    """Audio source replaying a list of blocks; each read advances the clock."""

    def __init__(self, blocks, clock: VirtualClock, sample_rate: int = 16000, on_read=None):
        self.blocks = list(blocks)
        self.clock = clock
        self.sample_rate = sample_rate
        self.opened = False
        self.closed = False
        self.reads = 0
        self.on_read = on_read

    def open(self):
        self.opened = True

    def read(self, frames):
        self.reads += 1
        self.clock.advance(frames / self.sample_rate)
        if self.on_read is not None:
            self.on_read(self.reads)
        if not self.blocks:
            return np.zeros(0, dtype=np.int16)
        return self.blocks.pop(0)

    def close(self):
        self.closed = True


@pytest.fixture
def virtual_clock():
    return VirtualClock()


@pytest.fixture
def make_source(virtual_clock):
    """Factory for scripted sources sharing the virtual clock."""
    def _make(blocks, on_read=None):
        return ScriptedSource(blocks, virtual_clock, on_read=on_read)
    return _make


# ==================== Collaborator Fakes ====================

class FakeTranscriber:
    def __init__(self, text="buy milk", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def transcribe(self, artifact, language=None):
        self.calls.append((artifact, language))
        if self.error is not None:
            raise self.error
        return self.text

    def close(self):
        pass


class FakeClassifier:
    def __init__(self, record=None, error=None):
        self.record = record or Record(type="plain", content="buy milk")
        self.error = error
        self.calls = []

    def classify(self, text, instructions):
        self.calls.append((text, instructions))
        if self.error is not None:
            raise self.error
        return self.record

    def close(self):
        pass


class FakeRemoteDocument:
    def __init__(self, path, content, version):
        self.path = path
        self.content = content
        self.version = version


class FakeDocumentStore:
    """In-memory document with sha-style version checks."""

    def __init__(self, content="# Inbox\n", prompt="custom prompt", stale=False):
        self.content = content
        self.version = 1
        self.prompt = prompt
        self.prompt_error = None
        self.fetch_error = None
        self.stale = stale
        self.fetch_calls = 0
        self.update_calls = []

    def fetch(self, path=None):
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return FakeRemoteDocument(path or "inbox.md", self.content, f"sha{self.version}")

    def update(self, path, content, version, message):
        self.update_calls.append((path, content, version, message))
        if version != f"sha{self.version}":
            raise PersistenceConflict(f"HTTP 409: inbox.md does not match {version}")
        self.content = content
        self.version += 1
        return f"https://github.com/alice/notes/commit/{self.version}"

    def append_record(self, record, timestamp):
        document = self.fetch()
        if self.stale:
            # Someone else commits between our fetch and our write
            self.version += 1
        return self.update(
            document.path,
            document.content + format_entry(record, timestamp),
            document.version,
            f"Add memo: {record.type.value}",
        )

    def fetch_prompt(self):
        if self.prompt_error is not None:
            raise self.prompt_error
        return self.prompt

    def close(self):
        pass


@pytest.fixture
def fake_transcriber():
    return FakeTranscriber()


@pytest.fixture
def fake_classifier():
    return FakeClassifier()


@pytest.fixture
def fake_documents():
    return FakeDocumentStore()


@pytest.fixture
def stale_documents():
    """Document store that always loses the race to another writer."""
    return FakeDocumentStore(stale=True)


@pytest.fixture
def failing_classifier():
    return FakeClassifier(error=ClassificationError("Malformed classifier output"))


@pytest.fixture
def fixed_now():
    return datetime(2024, 5, 1, 9, 30, 15)


@pytest.fixture
def prompt_error():
    return PromptLoadError("HTTP 404: Not Found")
