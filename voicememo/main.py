"""Application wiring and command-line entry point for voicememo."""

import argparse
import logging
import signal
import sys
import threading
import time
from typing import Optional

import uvicorn

from .audio.capture import CaptureLoop, MicrophoneSource
from .config import Config, load_config
from .errors import PipelineBusyError
from .pipeline.orchestrator import PipelineOrchestrator
from .pipeline.state import PipelineStage
from .services.classifier import IntentClassifier
from .services.document import DocumentStore
from .services.transcriber import create_transcriber
from .web.api import create_app, set_app_instance

logger = logging.getLogger(__name__)


class VoiceMemoApp:
    """Owns the capture loop, service clients and pipeline."""

    def __init__(self, config: Config):
        self.config = config
        self._running = False

        logger.info("Initializing capture loop...")
        self.capture = CaptureLoop(config.audio)

        logger.info("Initializing service clients...")
        self.transcriber = create_transcriber(config.transcription)
        self.classifier = IntentClassifier(config.classifier)
        self.documents = DocumentStore(config.document)

        self.pipeline = PipelineOrchestrator(
            classifier=self.classifier,
            documents=self.documents,
            transcriber=self.transcriber,
            capture=self.capture,
            language=config.transcription.language,
        )

        # Web server
        self._web_thread: Optional[threading.Thread] = None
        self._web_server: Optional[uvicorn.Server] = None

    def _start_web_server(self, port: Optional[int] = None) -> None:
        """Serve the control API from a daemon thread."""
        host = self.config.web.host
        port = port or self.config.web.port

        set_app_instance(self)
        app = create_app()

        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._web_server = uvicorn.Server(config)

        self._web_thread = threading.Thread(target=self._web_server.run, daemon=True)
        self._web_thread.start()

        logger.info(f"Control API listening on http://{host}:{port}")

    def _stop_web_server(self) -> None:
        server, thread = self._web_server, self._web_thread
        if server is None:
            return
        server.should_exit = True
        if thread is not None:
            thread.join(timeout=5.0)
        self._web_server = None
        self._web_thread = None
        logger.info("Control API stopped")

    def start(self, enable_web: Optional[bool] = None, web_port: Optional[int] = None) -> None:
        """Prefetch remote state and start the web server."""
        if self._running:
            logger.warning("voicememo already running")
            return

        logger.info("Starting voicememo...")
        self._running = True
        self.config.ensure_directories()

        prompt_loaded, view = self.pipeline.load_remote()
        logger.info(
            f"Prompt: {'remote' if prompt_loaded else 'default'}, "
            f"document: {'loaded' if view.loaded else 'unavailable'}"
        )

        if enable_web is None:
            enable_web = self.config.web.enabled
        if enable_web:
            self._start_web_server(port=web_port)

        logger.info("voicememo started successfully")

    def stop(self) -> None:
        """Stop all components gracefully."""
        if not self._running:
            return

        logger.info("Stopping voicememo...")
        self._running = False

        self._stop_web_server()

        if self.capture.is_running():
            self.capture.reset()

        for client in (self.transcriber, self.classifier, self.documents):
            try:
                client.close()
            except Exception as e:
                logger.warning(f"Error closing client: {e}")

        logger.info("voicememo stopped")

    def record_once(self, timeout: float = 120.0):
        """Record one utterance and wait for the pipeline to finish."""
        done = threading.Event()

        def on_snapshot(snapshot):
            if snapshot.is_terminal:
                done.set()

        self.pipeline.states.add_listener(on_snapshot)
        try:
            self.pipeline.start_recording()
            if done.wait(timeout=timeout):
                return self.pipeline.snapshot

            snapshot = self.pipeline.snapshot
            logger.warning(f"Timed out waiting for the voice memo while {snapshot.stage.value}")
            try:
                self.pipeline.reset()
            except PipelineBusyError as e:
                logger.warning(f"Could not reset pipeline: {e}")
            return snapshot
        finally:
            self.pipeline.states.remove_listener(on_snapshot)

    def get_status(self) -> dict:
        """Get current status of all components."""
        status = self.pipeline.get_status()
        status["running"] = self._running
        return status


def _print_result(snapshot) -> int:
    if snapshot.failure is not None:
        print(f"Failed ({snapshot.failure.kind.value}): {snapshot.failure.reason}")
        if snapshot.record is not None:
            print(f"  record: {snapshot.record.model_dump_json()}")
        return 1
    if snapshot.stage != PipelineStage.SUCCEEDED:
        print(f"Timed out while {snapshot.stage.value}")
        return 1
    print(f"{snapshot.message} {snapshot.commit_ref or ''}".strip())
    if snapshot.record is not None:
        print(f"  record: {snapshot.record.model_dump_json()}")
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="voicememo - voice memo recorder")
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file (default: $VOICEMEMO_CONFIG or config/settings.yaml)",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Control API port (overrides web.port)",
    )
    parser.add_argument(
        "--no-web",
        action="store_true",
        help="Do not serve the control API",
    )
    parser.add_argument(
        "--list-audio",
        action="store_true",
        help="List available audio devices",
    )
    parser.add_argument(
        "--text",
        help="Classify and save a typed memo, then exit",
    )
    parser.add_argument(
        "--record",
        action="store_true",
        help="Record one voice memo, save it, then exit",
    )
    args = parser.parse_args()

    if args.list_audio:
        print("Available audio devices:")
        for dev in MicrophoneSource.list_devices():
            print(f"  [{dev['id']}] {dev['name']} ({dev['channels']}ch)")
        return

    config = load_config(args.config)
    config.setup_logging()

    app = VoiceMemoApp(config)

    if args.text or args.record:
        app.start(enable_web=False)
        try:
            if args.text:
                snapshot = app.pipeline.submit_text(args.text)
            else:
                snapshot = app.record_once()
            app.pipeline.wait_for_refresh(timeout=5.0)
        finally:
            app.stop()
        sys.exit(_print_result(snapshot))

    def handle_signal(signum, frame):
        logger.info(f"Shutting down on signal {signum}")
        app.stop()
        sys.exit(0)

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, handle_signal)

    app.start(enable_web=False if args.no_web else None, web_port=args.port)

    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        app.stop()


if __name__ == "__main__":
    main()
