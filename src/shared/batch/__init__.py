"""Shared batch job infrastructure.

Provides the persisted job-state contract used by every tracked batch run:
- JobTracker: create, reclaim, and close job rows
- JobRecord / JobStatus / JobType: typed view of a job row
- derive_terminal_status: counters -> terminal status rule

Usage:
    from src.shared.batch import JobTracker, JobType
"""

from .tracking import (
    STALE_JOB_REASON,
    JobRecord,
    JobStatus,
    JobTracker,
    JobTrackingError,
    JobType,
    derive_terminal_status,
)

__all__ = [
    "JobTracker",
    "JobRecord",
    "JobStatus",
    "JobType",
    "JobTrackingError",
    "STALE_JOB_REASON",
    "derive_terminal_status",
]
