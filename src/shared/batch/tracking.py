"""Job tracking for batch runs persisted in Supabase.

Each batch run owns one row in the jobs table. The tracker enforces the
single-running-job rule per job type by sweeping stale ``running`` rows
before a new run starts, and derives the terminal status from the
per-item counters when the run finishes.

Usage:
    from src.shared.batch.tracking import JobTracker, JobType

    tracker = JobTracker()

    # Sweep rows left running by a crashed or overlapping run
    await tracker.reclaim_stale(JobType.BATCH_ANALYSIS)

    # Open a new job
    job = await tracker.start(JobType.BATCH_ANALYSIS, batch_size=20)

    # Close it with the aggregated counters
    await tracker.finish(job.id, processed=20, success_count=19, error_count=1)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..db import execute_async, get_supabase_client

logger = logging.getLogger(__name__)

STALE_JOB_REASON = "timeout - superseded by new run"


class JobType(str, Enum):
    """Known job types (pipeline stages that run tracked batches)."""
    BATCH_ANALYSIS = "batch_analysis"


class JobStatus(str, Enum):
    """Job status values."""
    RUNNING = "running"        # Batch in flight
    COMPLETED = "completed"    # Every processed item succeeded (or nothing to do)
    PARTIAL = "partial"        # Mixed outcome
    FAILED = "failed"          # Every item failed, batch aborted, or reclaimed as stale


class JobTrackingError(RuntimeError):
    """Raised when a job row cannot be created or updated."""


def derive_terminal_status(success_count: int, error_count: int) -> JobStatus:
    """Map final counters onto a terminal job status.

    ``error_count == 0`` is ``completed`` (including the empty run),
    all-failures is ``failed`` and anything else is ``partial``.
    """
    if error_count == 0:
        return JobStatus.COMPLETED
    if success_count == 0:
        return JobStatus.FAILED
    return JobStatus.PARTIAL


@dataclass
class JobRecord:
    """Represents a job row from the database."""
    id: str
    job_type: str
    status: JobStatus
    batch_size: int = 0
    items_processed: int = 0
    success_count: int = 0
    error_count: int = 0
    error_details: Optional[Dict[str, Any]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "JobRecord":
        """Create JobRecord from database row."""
        return cls(
            id=str(row["id"]),
            job_type=row.get("job_type", ""),
            status=JobStatus(row.get("status", JobStatus.RUNNING.value)),
            batch_size=row.get("batch_size") or 0,
            items_processed=row.get("items_processed") or 0,
            success_count=row.get("success_count") or 0,
            error_count=row.get("error_count") or 0,
            error_details=row.get("error_details"),
            start_time=_parse_timestamp(row.get("start_time")),
            end_time=_parse_timestamp(row.get("end_time")),
            created_at=_parse_timestamp(row.get("created_at")),
            updated_at=_parse_timestamp(row.get("updated_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for JSON responses."""
        return {
            "id": self.id,
            "job_type": self.job_type,
            "status": self.status.value,
            "batch_size": self.batch_size,
            "items_processed": self.items_processed,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "error_details": self.error_details,
            "start_time": _format_timestamp(self.start_time),
            "end_time": _format_timestamp(self.end_time),
            "created_at": _format_timestamp(self.created_at),
            "updated_at": _format_timestamp(self.updated_at),
        }


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse timestamp from database value."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _now_iso() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def _job_type_value(job_type: JobType | str) -> str:
    return job_type.value if isinstance(job_type, JobType) else str(job_type)


class JobTracker:
    """Create, reclaim, and close job rows in Supabase.

    Only the tracker writes to the jobs table. Rows are never deleted so
    the table doubles as the audit trail for every batch run.
    """

    TABLE_NAME = "email_processing_jobs"

    def __init__(self, client=None, table_name: Optional[str] = None):
        """Initialize tracker with Supabase client.

        Args:
            client: Optional Supabase client. If None, creates from environment.
            table_name: Override for the jobs table name.
        """
        self._client = client
        self.table_name = table_name or self.TABLE_NAME

    @property
    def client(self):
        """Lazy-load Supabase client."""
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    async def reclaim_stale(self, job_type: JobType | str) -> int:
        """Mark every ``running`` job of ``job_type`` as ``failed``.

        Must run before ``start`` so a crashed prior run never blocks new
        work. Two starts racing each other can both sweep and both run; the
        sweep is best-effort exclusion, not a lock.

        Returns:
            Number of rows reclaimed.
        """
        type_value = _job_type_value(job_type)
        now = _now_iso()
        update = {
            "status": JobStatus.FAILED.value,
            "error_details": {"reason": STALE_JOB_REASON, "reclaimed_at": now},
            "end_time": now,
            "updated_at": now,
        }
        response = await execute_async(
            self.client.table(self.table_name)
            .update(update)
            .eq("job_type", type_value)
            .eq("status", JobStatus.RUNNING.value)
        )
        reclaimed = len(getattr(response, "data", None) or [])
        if reclaimed:
            logger.warning(f"Reclaimed {reclaimed} stale running job(s) of type {type_value}")
        return reclaimed

    async def start(self, job_type: JobType | str, batch_size: int) -> JobRecord:
        """Insert a new ``running`` job with zero counters.

        Raises:
            JobTrackingError: If the insert returns no row
        """
        type_value = _job_type_value(job_type)
        now = _now_iso()
        record = {
            "job_type": type_value,
            "batch_size": batch_size,
            "status": JobStatus.RUNNING.value,
            "items_processed": 0,
            "success_count": 0,
            "error_count": 0,
            "start_time": now,
            "created_at": now,
            "updated_at": now,
        }

        response = await execute_async(self.client.table(self.table_name).insert(record))
        if not response.data:
            raise JobTrackingError(f"Failed to create {type_value} job")

        job = JobRecord.from_row(response.data[0])
        logger.info(f"Started job {job.id} (type={type_value}, batch_size={batch_size})")
        return job

    async def finish(
        self,
        job_id: str,
        *,
        processed: int,
        success_count: int,
        error_count: int,
        error_detail: Optional[Dict[str, Any]] = None,
    ) -> JobRecord:
        """Persist final counters and the derived terminal status in one write.

        Calling twice with the same counters leaves the same row (last write
        wins).

        Raises:
            JobTrackingError: If the job row does not exist
        """
        status = derive_terminal_status(success_count, error_count)
        now = _now_iso()
        update = {
            "status": status.value,
            "items_processed": processed,
            "success_count": success_count,
            "error_count": error_count,
            "error_details": error_detail,
            "end_time": now,
            "updated_at": now,
        }
        job = await self._update(job_id, update)
        logger.info(
            f"Finished job {job_id}: status={status.value}, processed={processed}, "
            f"success={success_count}, errors={error_count}"
        )
        return job

    async def fail(self, job_id: str, error_message: str) -> JobRecord:
        """Mark a job ``failed`` after a batch-fatal error."""
        now = _now_iso()
        update = {
            "status": JobStatus.FAILED.value,
            "error_details": {"error": error_message[:1000], "timestamp": now},
            "end_time": now,
            "updated_at": now,
        }
        job = await self._update(job_id, update)
        logger.error(f"Marked job {job_id} as failed: {error_message[:200]}")
        return job

    async def get(self, job_id: str) -> Optional[JobRecord]:
        """Get a job by id."""
        response = await execute_async(
            self.client.table(self.table_name).select("*").eq("id", job_id).limit(1)
        )
        if response.data:
            return JobRecord.from_row(response.data[0])
        return None

    async def latest(self, job_type: Optional[JobType | str] = None) -> Optional[JobRecord]:
        """Return the most recently created job, optionally for one type."""
        jobs = await self.recent(job_type, limit=1)
        return jobs[0] if jobs else None

    async def recent(
        self,
        job_type: Optional[JobType | str] = None,
        limit: int = 20,
    ) -> List[JobRecord]:
        """Get recent jobs, newest first."""
        query = (
            self.client.table(self.table_name)
            .select("*")
            .order("created_at", desc=True)
            .limit(limit)
        )
        if job_type:
            query = query.eq("job_type", _job_type_value(job_type))

        response = await execute_async(query)
        return [JobRecord.from_row(row) for row in (response.data or [])]

    async def running(self, job_type: JobType | str) -> List[JobRecord]:
        """Get jobs of ``job_type`` currently marked ``running``."""
        response = await execute_async(
            self.client.table(self.table_name)
            .select("*")
            .eq("job_type", _job_type_value(job_type))
            .eq("status", JobStatus.RUNNING.value)
        )
        return [JobRecord.from_row(row) for row in (response.data or [])]

    async def _update(self, job_id: str, update: Dict[str, Any]) -> JobRecord:
        response = await execute_async(
            self.client.table(self.table_name).update(update).eq("id", job_id)
        )
        if not response.data:
            raise JobTrackingError(f"Job {job_id} not found")
        return JobRecord.from_row(response.data[0])
