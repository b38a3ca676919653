"""Pipeline stages and the snapshots published for each transition."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from ..errors import FailureKind
from .record import Record


class PipelineStage(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    TRANSCRIBING = "transcribing"
    CLASSIFYING = "classifying"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_RANK = {
    PipelineStage.IDLE: 0,
    PipelineStage.RECORDING: 1,
    PipelineStage.FINALIZING: 2,
    PipelineStage.TRANSCRIBING: 3,
    PipelineStage.CLASSIFYING: 4,
    PipelineStage.PERSISTING: 5,
    PipelineStage.SUCCEEDED: 6,
    PipelineStage.FAILED: 6,
}

TERMINAL_STAGES = frozenset({PipelineStage.SUCCEEDED, PipelineStage.FAILED})

# Stages during which a run cannot be cancelled
PROCESSING_STAGES = frozenset({
    PipelineStage.TRANSCRIBING,
    PipelineStage.CLASSIFYING,
    PipelineStage.PERSISTING,
})


class InvalidTransition(RuntimeError):
    """A transition would revisit or skip backwards over a stage."""


def can_advance(current: PipelineStage, target: PipelineStage) -> bool:
    """Transitions only move forward; returning to idle needs a reset."""
    if current in TERMINAL_STAGES:
        return False
    return _RANK[target] > _RANK[current]


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    reason: str


@dataclass(frozen=True)
class PipelineSnapshot:
    """Read-only view of a pipeline run."""
    stage: PipelineStage = PipelineStage.IDLE
    message: str = ""
    input_text: str = ""
    transcript: Optional[str] = None
    record: Optional[Record] = None
    commit_ref: Optional[str] = None
    failure: Optional[Failure] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "message": self.message,
            "input_text": self.input_text,
            "transcript": self.transcript,
            "record": self.record.model_dump(mode="json") if self.record else None,
            "commit_ref": self.commit_ref,
            "failure": (
                {"kind": self.failure.kind.value, "reason": self.failure.reason}
                if self.failure else None
            ),
        }


@dataclass(frozen=True)
class DocumentView:
    """Cached copy of the remote document for display."""
    content: str = ""
    error: Optional[str] = None
    loaded_at: Optional[datetime] = None

    @property
    def loaded(self) -> bool:
        return self.loaded_at is not None and self.error is None
