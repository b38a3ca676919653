"""Voice-activity-gated capture loop for a single utterance."""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from ..config import AudioConfig
from ..errors import CaptureFault, InsufficientAudioError, VoiceMemoError
from ..events import StateChannel
from .level import LevelReading, compute_level
from .vad import VoiceActivityGate
from .wav import write_wav

logger = logging.getLogger(__name__)


def _sounddevice():
    """Import sounddevice on first use; it needs the PortAudio system library."""
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise CaptureFault(f"Audio backend unavailable: {e}") from e
    return sd


class CaptureState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"
    AUTO_STOPPED = "auto_stopped"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass(frozen=True)
class CaptureSnapshot:
    """Published view of the capture state machine."""
    state: CaptureState
    sample_count: int = 0
    elapsed_ms: float = 0.0
    message: str = ""


@dataclass(frozen=True)
class AudioArtifact:
    """A finalized recording in WAV format."""
    data: bytes
    sample_count: int
    sample_rate: int
    path: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        return self.sample_count / self.sample_rate

    @property
    def filename(self) -> str:
        if self.path:
            return Path(self.path).name
        return "recording.wav"

    def discard(self) -> None:
        """Delete the on-disk copy, if any."""
        if self.path:
            Path(self.path).unlink(missing_ok=True)


@dataclass
class CaptureSession:
    """Mutable state of one recording, owned by the capture worker."""
    session_id: int
    started_at: float = 0.0
    blocks: list[np.ndarray] = field(default_factory=list)
    sample_count: int = 0
    stop_requested: threading.Event = field(default_factory=threading.Event)
    cancelled: threading.Event = field(default_factory=threading.Event)

    def append(self, block: np.ndarray) -> None:
        self.blocks.append(block)
        self.sample_count += len(block)

    def samples(self) -> np.ndarray:
        if not self.blocks:
            return np.zeros(0, dtype=np.int16)
        return np.concatenate(self.blocks).astype(np.int16, copy=False)


class AudioSource:
    """Blocking source of PCM16 mono blocks."""

    def open(self) -> None:
        pass

    def read(self, frames: int) -> np.ndarray:
        raise NotImplementedError

    def close(self) -> None:
        pass


class MicrophoneSource(AudioSource):
    """Microphone input through a sounddevice stream."""

    def __init__(self, config: AudioConfig):
        self.config = config
        self._stream = None

    def _resolve_device(self):
        if self.config.device == "default":
            return None
        try:
            return int(self.config.device)
        except ValueError:
            return self.config.device

    def open(self) -> None:
        sd = _sounddevice()
        self._stream = sd.InputStream(
            device=self._resolve_device(),
            samplerate=self.config.sample_rate,
            channels=self.config.channels,
            dtype="int16",
            blocksize=self.config.block_samples,
        )
        self._stream.start()
        logger.info(f"Microphone opened: {self.config.sample_rate}Hz, {self.config.channels}ch")

    def read(self, frames: int) -> np.ndarray:
        if self._stream is None:
            raise CaptureFault("Microphone stream is not open")
        data, overflowed = self._stream.read(frames)
        if overflowed:
            logger.warning("Audio input overflow")
        data = np.asarray(data, dtype=np.int16)
        if data.ndim > 1:
            data = data[:, 0]
        return data.copy()

    def close(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None

    @staticmethod
    def list_devices() -> list[dict]:
        """List available audio input devices."""
        devices = []
        sd = _sounddevice()
        for i, device in enumerate(sd.query_devices()):
            if device["max_input_channels"] > 0:
                devices.append({
                    "id": i,
                    "name": device["name"],
                    "channels": device["max_input_channels"],
                    "sample_rate": device["default_samplerate"],
                })
        return devices


class CaptureLoop:
    """Records one utterance and stops on sustained silence.

    Each tick reads one block, publishes its level, and feeds the voice
    activity gate. The loop runs on a dedicated worker thread; ``stop()`` and
    ``reset()`` only set flags that the worker polls once per tick.

    A worker still blocked in ``read()`` after a reset keeps the loop busy
    until it closes its source, so two sessions never hold the device.
    """

    reset_timeout = 2.0

    def __init__(
        self,
        config: AudioConfig,
        source_factory: Optional[Callable[[], AudioSource]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.sample_rate = config.sample_rate
        self.block_samples = config.block_samples
        self.tick_seconds = config.tick_interval_ms / 1000

        self.gate = VoiceActivityGate(config)
        self._source_factory = source_factory or (lambda: MicrophoneSource(config))
        self._clock = clock
        self._sleep = sleep

        self.levels: StateChannel[LevelReading] = StateChannel("levels")
        self.states: StateChannel[CaptureSnapshot] = StateChannel(
            "capture", initial=CaptureSnapshot(CaptureState.IDLE)
        )

        self._lock = threading.Lock()
        self._running = False
        self._session: Optional[CaptureSession] = None
        self._next_session_id = 0
        self._thread: Optional[threading.Thread] = None

        self._on_complete: list[Callable[[AudioArtifact], None]] = []
        self._on_failure: list[Callable[[VoiceMemoError], None]] = []

    def on_complete(self, callback: Callable[[AudioArtifact], None]) -> None:
        """Register callback for a finalized artifact."""
        self._on_complete.append(callback)

    def on_failure(self, callback: Callable[[VoiceMemoError], None]) -> None:
        """Register callback for insufficient audio or a capture fault."""
        self._on_failure.append(callback)

    def start(self) -> bool:
        """Start a capture session. Returns False if one is already active."""
        with self._lock:
            if self._running:
                logger.warning("Capture already running")
                return False

            self._next_session_id += 1
            session = CaptureSession(session_id=self._next_session_id)
            self._session = session
            self._running = True
            self.gate.reset()
            self._thread = threading.Thread(
                target=self._run, args=(session,), name="capture", daemon=True
            )
            thread = self._thread

        logger.info("Capture started")
        self.states.publish(CaptureSnapshot(CaptureState.RECORDING))
        thread.start()
        return True

    def stop(self) -> None:
        """Request the active session to stop and finalize."""
        with self._lock:
            session = self._session
        if session is not None:
            logger.debug("Stop requested")
            session.stop_requested.set()

    def reset(self) -> None:
        """Abandon any active session and return to idle.

        A finished session's worker may still be running completion
        callbacks; it is not waited for.
        """
        with self._lock:
            session = self._session
            thread = self._thread if session is not None else None
            if session is not None:
                session.cancelled.set()
                session.stop_requested.set()

        in_worker = thread is threading.current_thread()
        if thread is not None and not in_worker:
            thread.join(timeout=self.reset_timeout)

        with self._lock:
            if self._session is session:
                self._session = None
            # A live worker releases the loop itself once its source is closed
            if thread is None or in_worker:
                pass
            elif thread.is_alive():
                logger.warning("Capture worker did not exit in time, loop stays busy")
            elif self._thread is thread:
                self._thread = None
                self._running = False
        self.gate.reset()
        self.states.publish(CaptureSnapshot(CaptureState.IDLE))
        logger.info("Capture reset")

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the capture worker to finish."""
        with self._lock:
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _run(self, session: CaptureSession) -> None:
        try:
            self._capture(session)
        finally:
            if session.cancelled.is_set():
                self._retire()

    def _capture(self, session: CaptureSession) -> None:
        """Worker body: record, then finalize or report failure."""
        source: Optional[AudioSource] = None
        session.started_at = self._clock()
        try:
            source = self._source_factory()
            source.open()
            final_state = self._record(source, session)
        except Exception as e:
            logger.error(f"Capture failed: {e}", exc_info=True)
            fault = e if isinstance(e, CaptureFault) else CaptureFault(str(e) or type(e).__name__)
            if not session.cancelled.is_set():
                self._fail(session, fault)
            return
        finally:
            if source is not None:
                try:
                    source.close()
                except Exception as e:
                    logger.warning(f"Error closing audio source: {e}")

        if final_state is None:
            logger.debug(f"Session {session.session_id} cancelled")
            return

        self.states.publish(self._snapshot(session, final_state))
        self._finalize(session)

    def _record(self, source: AudioSource, session: CaptureSession) -> Optional[CaptureState]:
        """Tick loop. Returns the stop state, or None when cancelled."""
        threshold = self.config.silence_threshold_db

        while True:
            tick_start = self._clock()

            if session.cancelled.is_set():
                return None
            if session.stop_requested.is_set():
                return CaptureState.STOPPING

            block = source.read(self.block_samples)

            if session.cancelled.is_set():
                return None

            if block is not None and len(block) > 0:
                session.append(block)
                reading = compute_level(block, threshold)
                self.levels.publish(reading)

                elapsed_ms = (self._clock() - session.started_at) * 1000
                if self.gate.update(reading, elapsed_ms):
                    logger.info(f"Silence detected, auto-stopping at {elapsed_ms:.0f}ms")
                    return CaptureState.AUTO_STOPPED

            remaining = self.tick_seconds - (self._clock() - tick_start)
            if remaining > 0:
                self._sleep(remaining)

    def _finalize(self, session: CaptureSession) -> None:
        """Encode collected samples or report insufficient audio."""
        min_samples = self.config.min_samples
        if session.sample_count < min_samples:
            logger.warning(f"No meaningful audio recorded: {session.sample_count} samples")
            self._fail(
                session,
                InsufficientAudioError(
                    f"Captured {session.sample_count} samples, need at least {min_samples}"
                ),
            )
            return

        try:
            samples = session.samples()
            filename = f"recording_{int(time.time() * 1000)}_{session.session_id}.wav"
            path = Path(self.config.artifact_dir) / filename
            data = write_wav(path, samples, self.sample_rate)
        except Exception as e:
            logger.error(f"Failed to write recording: {e}", exc_info=True)
            self._fail(session, CaptureFault(f"Failed to write recording: {e}"))
            return

        artifact = AudioArtifact(
            data=data,
            sample_count=len(samples),
            sample_rate=self.sample_rate,
            path=str(path),
        )
        logger.info(f"Recording completed: {artifact.duration_seconds:.2f}s -> {path}")

        if not self._release(session):
            artifact.discard()
            return

        self.states.publish(self._snapshot(session, CaptureState.FINALIZED))
        for callback in self._on_complete:
            try:
                callback(artifact)
            except Exception as e:
                logger.error(f"Capture completion callback error: {e}", exc_info=True)

    def _fail(self, session: CaptureSession, error: VoiceMemoError) -> None:
        if not self._release(session):
            return

        self.states.publish(self._snapshot(session, CaptureState.FAILED, str(error)))
        for callback in self._on_failure:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Capture failure callback error: {e}", exc_info=True)

    def _release(self, session: CaptureSession) -> bool:
        """Mark the session finished. False if it was reset meanwhile."""
        with self._lock:
            if self._session is not session or session.cancelled.is_set():
                return False
            self._session = None
            self._running = False
        return True

    def _retire(self) -> None:
        """Free the loop after a cancelled session's worker closed its source."""
        with self._lock:
            if self._thread is threading.current_thread():
                self._thread = None
                self._running = False

    def _snapshot(
        self, session: CaptureSession, state: CaptureState, message: str = ""
    ) -> CaptureSnapshot:
        elapsed_ms = session.sample_count * 1000 / self.sample_rate
        return CaptureSnapshot(
            state=state,
            sample_count=session.sample_count,
            elapsed_ms=elapsed_ms,
            message=message,
        )

    def is_running(self) -> bool:
        """Check if a session is active."""
        return self._running

    @property
    def state(self) -> CaptureState:
        snapshot = self.states.latest
        return snapshot.state if snapshot is not None else CaptureState.IDLE
