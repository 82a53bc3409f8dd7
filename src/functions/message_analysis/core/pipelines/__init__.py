"""Batch dispatch, tracked batch runs and the full pipeline orchestrator."""

from .batch_job import BatchAnalysisJob, BatchRunResult
from .dispatcher import BatchFatalError, BatchOutcome, ChunkedDispatcher
from .orchestrator import PipelineOrchestrator, PipelineRunResult, StageResult

__all__ = [
    "BatchAnalysisJob",
    "BatchFatalError",
    "BatchOutcome",
    "BatchRunResult",
    "ChunkedDispatcher",
    "PipelineOrchestrator",
    "PipelineRunResult",
    "StageResult",
]
