import asyncio
from types import SimpleNamespace

import pytest

from src.shared.batch import (
    STALE_JOB_REASON,
    JobStatus,
    JobTracker,
    JobTrackingError,
    JobType,
    derive_terminal_status,
)
from tests.message_analysis.fakes import FakeSupabaseClient

JOBS = "email_processing_jobs"


@pytest.mark.parametrize(
    "success_count, error_count, expected",
    [
        (0, 0, JobStatus.COMPLETED),
        (5, 0, JobStatus.COMPLETED),
        (0, 3, JobStatus.FAILED),
        (9, 1, JobStatus.PARTIAL),
        (1, 9, JobStatus.PARTIAL),
    ],
)
def test_derive_terminal_status(success_count, error_count, expected):
    assert derive_terminal_status(success_count, error_count) is expected


def test_reclaim_stale_only_touches_running_rows_of_same_type():
    client = FakeSupabaseClient(
        {
            JOBS: [
                {"id": "old-1", "job_type": "batch_analysis", "status": "running"},
                {"id": "old-2", "job_type": "batch_analysis", "status": "completed"},
                {"id": "other", "job_type": "token_refresh", "status": "running"},
            ]
        }
    )
    tracker = JobTracker(client)

    reclaimed = asyncio.run(tracker.reclaim_stale(JobType.BATCH_ANALYSIS))

    rows = {row["id"]: row for row in client.rows(JOBS)}
    assert reclaimed == 1
    assert rows["old-1"]["status"] == "failed"
    assert rows["old-1"]["error_details"]["reason"] == STALE_JOB_REASON
    assert rows["old-1"]["end_time"]
    assert rows["old-2"]["status"] == "completed"
    assert rows["other"]["status"] == "running"


def test_start_after_reclaim_leaves_single_running_job():
    client = FakeSupabaseClient(
        {JOBS: [{"id": "orphan", "job_type": "batch_analysis", "status": "running"}]}
    )
    tracker = JobTracker(client)

    async def scenario():
        await tracker.reclaim_stale(JobType.BATCH_ANALYSIS)
        return await tracker.start(JobType.BATCH_ANALYSIS, batch_size=20)

    job = asyncio.run(scenario())

    running = [row for row in client.rows(JOBS) if row["status"] == "running"]
    assert [row["id"] for row in running] == [job.id]
    assert job.status is JobStatus.RUNNING
    assert (job.items_processed, job.success_count, job.error_count) == (0, 0, 0)
    assert job.batch_size == 20


def test_finish_is_idempotent_for_same_counters():
    client = FakeSupabaseClient()
    tracker = JobTracker(client)

    async def scenario():
        job = await tracker.start(JobType.BATCH_ANALYSIS, batch_size=10)
        detail = {"errors": [{"item_id": "msg-03", "error": "boom"}]}
        first = await tracker.finish(job.id, processed=10, success_count=9, error_count=1, error_detail=detail)
        second = await tracker.finish(job.id, processed=10, success_count=9, error_count=1, error_detail=detail)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.status is JobStatus.PARTIAL
    assert second.status is JobStatus.PARTIAL
    assert (second.items_processed, second.success_count, second.error_count) == (10, 9, 1)
    assert len(client.rows(JOBS)) == 1


def test_fail_records_structured_error():
    client = FakeSupabaseClient()
    tracker = JobTracker(client)

    async def scenario():
        job = await tracker.start(JobType.BATCH_ANALYSIS, batch_size=10)
        return await tracker.fail(job.id, "storage unavailable")

    job = asyncio.run(scenario())

    assert job.status is JobStatus.FAILED
    assert job.error_details["error"] == "storage unavailable"
    assert "timestamp" in job.error_details


def test_start_raises_when_insert_returns_nothing():
    class _EmptyInsertClient(FakeSupabaseClient):
        def _execute(self, query):
            if query._op == "insert":
                return SimpleNamespace(data=[])
            return super()._execute(query)

    tracker = JobTracker(_EmptyInsertClient())

    with pytest.raises(JobTrackingError):
        asyncio.run(tracker.start(JobType.BATCH_ANALYSIS, batch_size=5))


def test_finish_unknown_job_raises():
    tracker = JobTracker(FakeSupabaseClient())

    with pytest.raises(JobTrackingError):
        asyncio.run(tracker.finish("missing", processed=0, success_count=0, error_count=0))


def test_latest_returns_newest_job_for_type():
    client = FakeSupabaseClient(
        {
            JOBS: [
                {"id": "a", "job_type": "batch_analysis", "status": "completed", "created_at": "2025-01-01T10:00:00+00:00"},
                {"id": "b", "job_type": "batch_analysis", "status": "partial", "created_at": "2025-01-01T11:00:00+00:00"},
                {"id": "c", "job_type": "token_refresh", "status": "completed", "created_at": "2025-01-01T12:00:00+00:00"},
            ]
        }
    )
    tracker = JobTracker(client)

    assert asyncio.run(tracker.latest()).id == "c"
    latest_batch = asyncio.run(tracker.latest(JobType.BATCH_ANALYSIS))
    assert latest_batch.id == "b"
    assert latest_batch.to_dict()["status"] == "partial"
