"""Sequences transcription, classification and persistence of a memo."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from ..audio.capture import AudioArtifact, CaptureLoop, CaptureSnapshot, CaptureState
from ..errors import (
    CaptureFault,
    ClassificationError,
    FailureKind,
    PersistenceError,
    PipelineBusyError,
    PromptLoadError,
    TranscriptionError,
    VoiceMemoError,
)
from ..events import StateChannel
from .prompt import DEFAULT_PROMPT
from .record import Record
from .state import (
    PROCESSING_STAGES,
    DocumentView,
    Failure,
    InvalidTransition,
    PipelineSnapshot,
    PipelineStage,
    can_advance,
)

logger = logging.getLogger(__name__)

_FAILURE_LABELS = {
    FailureKind.INSUFFICIENT_AUDIO: "No speech captured",
    FailureKind.CAPTURE_FAULT: "Recording failed",
    FailureKind.TRANSCRIPTION: "Transcription failed",
    FailureKind.CLASSIFICATION: "Classification failed",
    FailureKind.PERSISTENCE_CONFLICT: "Document changed remotely",
    FailureKind.PERSISTENCE: "Saving failed",
    FailureKind.PROMPT_LOAD: "Prompt load failed",
}

# Stage whose failure kind is used for unexpected exceptions
_STAGE_ERRORS = {
    PipelineStage.TRANSCRIBING: TranscriptionError,
    PipelineStage.CLASSIFYING: ClassificationError,
    PipelineStage.PERSISTING: PersistenceError,
}


class PipelineOrchestrator:
    """Runs one memo at a time through Transcribe, Classify and Persist.

    Every transition publishes a frozen ``PipelineSnapshot`` on ``states``
    before the stage runs. A failing stage ends the run in ``FAILED`` with the
    outputs of earlier stages kept on the snapshot. Terminal states stay put
    until ``reset()``; submissions in the meantime raise ``PipelineBusyError``.
    """

    def __init__(
        self,
        classifier,
        documents,
        transcriber=None,
        capture: Optional[CaptureLoop] = None,
        language: Optional[str] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.classifier = classifier
        self.documents = documents
        self.transcriber = transcriber
        self.capture = capture
        self.language = language
        self._now = now

        self._lock = threading.Lock()
        self._snapshot = PipelineSnapshot()
        self.states: StateChannel[PipelineSnapshot] = StateChannel(
            "pipeline", initial=self._snapshot
        )

        self._prompt = DEFAULT_PROMPT
        self._prompt_loaded = False
        self._document_view = DocumentView()
        self.document_views: StateChannel[DocumentView] = StateChannel(
            "document", initial=self._document_view
        )
        self._refresh_thread: Optional[threading.Thread] = None

        if capture is not None:
            capture.states.add_listener(self._on_capture_state)
            capture.on_complete(self._on_capture_complete)
            capture.on_failure(self._on_capture_failure)

    # ==================== State ====================

    @property
    def snapshot(self) -> PipelineSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def stage(self) -> PipelineStage:
        return self.snapshot.stage

    def _begin(self, stage: PipelineStage, message: str, **fields) -> PipelineSnapshot:
        """Claim the pipeline for a new run. Only allowed from IDLE."""
        with self._lock:
            current = self._snapshot.stage
            if current != PipelineStage.IDLE:
                raise PipelineBusyError(
                    f"Pipeline is {current.value}; reset before starting another run"
                )
            snapshot = PipelineSnapshot(stage=stage, message=message, **fields)
            self._snapshot = snapshot
        self._publish(snapshot)
        return snapshot

    def _advance(
        self,
        stage: PipelineStage,
        message: str,
        expected: Optional[tuple] = None,
        **changes,
    ) -> PipelineSnapshot:
        """Move forward to ``stage``, optionally only from ``expected`` stages."""
        with self._lock:
            current = self._snapshot
            if expected is not None and current.stage not in expected:
                raise InvalidTransition(
                    f"Expected one of {[s.value for s in expected]}, pipeline is {current.stage.value}"
                )
            if not can_advance(current.stage, stage):
                raise InvalidTransition(f"{current.stage.value} -> {stage.value}")
            snapshot = replace(current, stage=stage, message=message, **changes)
            self._snapshot = snapshot
        self._publish(snapshot)
        return snapshot

    def _fail(self, error: VoiceMemoError) -> PipelineSnapshot:
        label = _FAILURE_LABELS.get(error.kind, "Failed")
        logger.warning(f"{label}: {error}")
        return self._advance(
            PipelineStage.FAILED,
            f"{label}: {error}",
            failure=Failure(kind=error.kind, reason=str(error)),
        )

    def _publish(self, snapshot: PipelineSnapshot) -> None:
        logger.info(f"Pipeline {snapshot.stage.value}: {snapshot.message}")
        self.states.publish(snapshot)

    def reset(self) -> PipelineSnapshot:
        """Return to IDLE from a terminal state or abandon a recording.

        Raises:
            PipelineBusyError: While transcription, classification or
                persistence is in flight; those cannot be cancelled.
        """
        with self._lock:
            stage = self._snapshot.stage
            if stage in PROCESSING_STAGES:
                raise PipelineBusyError(f"Cannot reset while {stage.value}")
            cancel_capture = self.capture is not None and (
                stage in (PipelineStage.RECORDING, PipelineStage.FINALIZING)
                or self.capture.is_running()
            )

        if cancel_capture:
            self.capture.reset()

        with self._lock:
            if self._snapshot.stage in PROCESSING_STAGES:
                raise PipelineBusyError(f"Cannot reset while {self._snapshot.stage.value}")
            snapshot = PipelineSnapshot()
            self._snapshot = snapshot
        self._publish(snapshot)
        return snapshot

    # ==================== Submissions ====================

    def submit_text(self, text: str) -> PipelineSnapshot:
        """Classify and persist typed text. Blocks until the run ends."""
        if not text or not text.strip():
            raise ValueError("No text to process")

        self._begin(
            PipelineStage.CLASSIFYING,
            "Analyzing with Gemini...",
            input_text=text,
        )
        return self._classify_and_persist(text)

    def submit_audio(self, artifact: AudioArtifact) -> PipelineSnapshot:
        """Run a finished recording through the whole pipeline."""
        self._require_transcriber()
        self._begin(PipelineStage.TRANSCRIBING, "Converting speech to text...")
        return self._transcribe_and_continue(artifact)

    def start_recording(self) -> PipelineSnapshot:
        """Start a voice capture; the pipeline continues when it finalizes."""
        if self.capture is None:
            raise RuntimeError("No capture loop configured")
        self._require_transcriber()
        if self.capture.is_running():
            raise PipelineBusyError("A capture session is already active")

        snapshot = self._begin(
            PipelineStage.RECORDING,
            "Recording... (stops automatically after 5s of silence)",
        )
        if not self.capture.start():
            # Lost a race with another capture start
            return self._fail(CaptureFault("A capture session is already active"))
        return snapshot

    def stop_recording(self) -> None:
        """Ask the capture loop to stop and finalize."""
        if self.capture is not None:
            self.capture.stop()

    def _require_transcriber(self) -> None:
        if self.transcriber is None:
            raise RuntimeError("No transcriber configured")

    # ==================== Capture events ====================

    def _on_capture_state(self, snapshot: CaptureSnapshot) -> None:
        if snapshot.state in (CaptureState.STOPPING, CaptureState.AUTO_STOPPED):
            try:
                self._advance(
                    PipelineStage.FINALIZING,
                    "Processing audio...",
                    expected=(PipelineStage.RECORDING,),
                )
            except InvalidTransition:
                logger.debug(f"Ignoring capture state {snapshot.state.value}")

    def _on_capture_complete(self, artifact: AudioArtifact) -> None:
        try:
            self._advance(
                PipelineStage.TRANSCRIBING,
                "Converting speech to text...",
                expected=(PipelineStage.RECORDING, PipelineStage.FINALIZING),
            )
        except InvalidTransition:
            logger.warning("Recording finished outside of a voice run, discarding")
            artifact.discard()
            return
        self._transcribe_and_continue(artifact)

    def _on_capture_failure(self, error: VoiceMemoError) -> None:
        with self._lock:
            stage = self._snapshot.stage
        if stage in (PipelineStage.RECORDING, PipelineStage.FINALIZING):
            self._fail(error)

    # ==================== Stages ====================

    def _run_stage(self, stage: PipelineStage, func, *args):
        """Call a collaborator, mapping unexpected exceptions to the stage's error."""
        try:
            return func(*args)
        except VoiceMemoError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error while {stage.value}: {e}", exc_info=True)
            raise _STAGE_ERRORS[stage](str(e) or type(e).__name__) from e

    def _transcribe_and_continue(self, artifact: AudioArtifact) -> PipelineSnapshot:
        try:
            text = self._run_stage(
                PipelineStage.TRANSCRIBING,
                self.transcriber.transcribe,
                artifact,
                self.language,
            )
        except VoiceMemoError as e:
            return self._fail(e)
        finally:
            artifact.discard()

        if not text or not text.strip():
            return self._fail(TranscriptionError("Speech was not recognized"))

        self._advance(
            PipelineStage.CLASSIFYING,
            f"Transcribed: {text}",
            input_text=text,
            transcript=text,
        )
        return self._classify_and_persist(text)

    def _classify_and_persist(self, text: str) -> PipelineSnapshot:
        prompt = self.active_prompt

        try:
            record: Record = self._run_stage(
                PipelineStage.CLASSIFYING, self.classifier.classify, text, prompt
            )
        except VoiceMemoError as e:
            return self._fail(e)

        self._advance(PipelineStage.PERSISTING, "Saving to GitHub...", record=record)

        try:
            commit_ref = self._run_stage(
                PipelineStage.PERSISTING,
                self.documents.append_record,
                record,
                self._now(),
            )
        except VoiceMemoError as e:
            return self._fail(e)

        snapshot = self._advance(PipelineStage.SUCCEEDED, "Saved!", commit_ref=commit_ref)
        logger.info(f"Memo saved successfully: {commit_ref}")
        self._refresh_in_background()
        return snapshot

    # ==================== Remote prompt and document ====================

    @property
    def active_prompt(self) -> str:
        with self._lock:
            return self._prompt

    @property
    def prompt_loaded(self) -> bool:
        return self._prompt_loaded

    def update_prompt(self, prompt: str) -> bool:
        """Swap in a new prompt if it is non-empty and differs. Returns True if swapped."""
        if not prompt or not prompt.strip():
            return False
        with self._lock:
            if prompt == self._prompt:
                return False
            self._prompt = prompt
        logger.info("Classification prompt updated")
        return True

    def reload_prompt(self) -> bool:
        """Load the remote prompt; on failure keep the current one. Never raises."""
        try:
            prompt = self.documents.fetch_prompt()
        except PromptLoadError as e:
            self._prompt_loaded = False
            logger.warning(f"Failed to load prompt, using default: {e}")
            return False
        except Exception as e:
            self._prompt_loaded = False
            logger.warning(f"Failed to load prompt, using default: {e}", exc_info=True)
            return False

        self.update_prompt(prompt)
        self._prompt_loaded = True
        logger.info("Prompt loaded successfully")
        return True

    @property
    def document_view(self) -> DocumentView:
        with self._lock:
            return self._document_view

    def refresh_document(self) -> DocumentView:
        """Reload the cached document view. Failures are recorded on the view."""
        try:
            document = self.documents.fetch()
            view = DocumentView(content=document.content, loaded_at=self._now())
        except Exception as e:
            logger.error(f"Failed to load document content: {e}")
            view = DocumentView(error=str(e) or type(e).__name__, loaded_at=self._now())

        with self._lock:
            self._document_view = view
        self.document_views.publish(view)
        return view

    def _refresh_in_background(self) -> None:
        self._refresh_thread = threading.Thread(
            target=self.refresh_document, name="document-refresh", daemon=True
        )
        self._refresh_thread.start()

    def load_remote(self) -> tuple[bool, DocumentView]:
        """Load prompt and document in parallel; neither blocks the other's result."""
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="prefetch") as pool:
            prompt_future = pool.submit(self.reload_prompt)
            document_future = pool.submit(self.refresh_document)

            try:
                prompt_loaded = prompt_future.result()
            except Exception as e:
                logger.error(f"Prompt prefetch failed: {e}")
                prompt_loaded = False

            try:
                view = document_future.result()
            except Exception as e:
                logger.error(f"Document prefetch failed: {e}")
                view = DocumentView(error=str(e))

        return prompt_loaded, view

    def wait_for_refresh(self, timeout: Optional[float] = None) -> None:
        """Block until the post-success document refresh finishes."""
        thread = self._refresh_thread
        if thread is not None:
            thread.join(timeout=timeout)

    def get_status(self) -> dict:
        """Summarize pipeline, capture and remote state."""
        capture_state = None
        running = False
        level = None
        if self.capture is not None:
            capture_state = self.capture.state.value
            running = self.capture.is_running()
            reading = self.capture.levels.latest
            if running and reading is not None:
                level = reading.to_dict()

        view = self.document_view
        return {
            "pipeline": self.snapshot.to_dict(),
            "capture": {
                "state": capture_state,
                "running": running,
                "level": level,
            },
            "prompt_loaded": self._prompt_loaded,
            "document": {
                "loaded": view.loaded,
                "error": view.error,
                "loaded_at": view.loaded_at.isoformat() if view.loaded_at else None,
            },
        }
