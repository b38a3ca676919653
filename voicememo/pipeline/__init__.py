"""Memo processing pipeline: state, records and orchestration."""

from .orchestrator import PipelineOrchestrator
from .record import Record, RecordType
from .state import Failure, PipelineSnapshot, PipelineStage

__all__ = [
    "PipelineOrchestrator",
    "Record",
    "RecordType",
    "Failure",
    "PipelineSnapshot",
    "PipelineStage",
]
