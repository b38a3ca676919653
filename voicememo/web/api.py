"""FastAPI control API for voicememo."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..errors import PipelineBusyError

logger = logging.getLogger(__name__)

# Will be set by main.py
_app_instance = None


class MemoRequest(BaseModel):
    """Typed memo submission."""
    text: str


class PipelineResponse(BaseModel):
    """Response model for pipeline actions."""
    success: bool
    message: str
    data: Optional[dict] = None


class StatusResponse(BaseModel):
    """Response model for system status."""
    running: bool
    uptime_seconds: float
    pipeline: dict
    capture: dict
    prompt_loaded: bool
    document: dict


def set_app_instance(instance) -> None:
    """Set the VoiceMemoApp instance for API access."""
    global _app_instance
    _app_instance = instance


def _require_app():
    if _app_instance is None:
        raise HTTPException(status_code=503, detail="voicememo not initialized")
    return _app_instance


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="voicememo API",
        description="Voice memo capture and classification pipeline",
        version="0.1.0",
    )

    # CORS for local network access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store start time for uptime calculation
    app.state.start_time = datetime.now()

    @app.get("/api/status", response_model=StatusResponse)
    async def get_status():
        """Get current pipeline and capture status."""
        instance = _require_app()
        status = instance.get_status()
        uptime = (datetime.now() - app.state.start_time).total_seconds()

        return StatusResponse(
            running=status["running"],
            uptime_seconds=uptime,
            pipeline=status["pipeline"],
            capture=status["capture"],
            prompt_loaded=status["prompt_loaded"],
            document=status["document"],
        )

    @app.post("/api/memo", response_model=PipelineResponse)
    def submit_memo(request: MemoRequest):
        """Classify typed text and append it to the document."""
        instance = _require_app()

        try:
            snapshot = instance.pipeline.submit_text(request.text)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PipelineBusyError as e:
            raise HTTPException(status_code=409, detail=str(e))

        return PipelineResponse(
            success=snapshot.failure is None,
            message=snapshot.message,
            data=snapshot.to_dict(),
        )

    @app.post("/api/recording/start", response_model=PipelineResponse)
    async def start_recording():
        """Start a voice capture."""
        instance = _require_app()

        try:
            snapshot = instance.pipeline.start_recording()
        except PipelineBusyError as e:
            raise HTTPException(status_code=409, detail=str(e))

        return PipelineResponse(
            success=snapshot.failure is None,
            message=snapshot.message,
            data=snapshot.to_dict(),
        )

    @app.post("/api/recording/stop", response_model=PipelineResponse)
    async def stop_recording():
        """Request the active capture to stop and finalize."""
        instance = _require_app()
        instance.pipeline.stop_recording()
        return PipelineResponse(success=True, message="Stop requested")

    @app.post("/api/reset", response_model=PipelineResponse)
    def reset_pipeline():
        """Return the pipeline to idle."""
        instance = _require_app()

        try:
            snapshot = instance.pipeline.reset()
        except PipelineBusyError as e:
            raise HTTPException(status_code=409, detail=str(e))

        return PipelineResponse(success=True, message="Reset", data=snapshot.to_dict())

    @app.get("/api/document", response_model=PipelineResponse)
    async def get_document():
        """Get the cached remote document."""
        instance = _require_app()
        view = instance.pipeline.document_view

        if view.error is not None:
            return PipelineResponse(
                success=False,
                message=f"Could not load document: {view.error}",
            )

        return PipelineResponse(
            success=True,
            message="Document retrieved" if view.loaded else "Document not loaded yet",
            data={
                "content": view.content,
                "loaded_at": view.loaded_at.isoformat() if view.loaded_at else None,
            },
        )

    @app.post("/api/prompt/reload", response_model=PipelineResponse)
    def reload_prompt():
        """Reload the classification prompt from the repository."""
        instance = _require_app()
        loaded = instance.pipeline.reload_prompt()
        return PipelineResponse(
            success=loaded,
            message="Prompt loaded" if loaded else "Using default prompt",
        )

    return app
