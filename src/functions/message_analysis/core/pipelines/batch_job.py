"""
Tracked batch analysis runs with self-extending continuation.

One ``run`` call reclaims stale jobs, opens a job row, dispatches one batch,
closes the job and, when the batch came back full and pending messages
remain, schedules a follow-up chain on a background task. The chain is a
bounded loop; each iteration is its own job row.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from src.shared.batch import JobStatus, JobTracker, JobType, derive_terminal_status

from ..config import AnalysisSettings
from ..contracts import AnalysisStatus
from ..db import DEFAULT_SELECTION
from ..monitoring import BATCH_ANALYSIS_COMPLETED, MetricsRecorder
from .dispatcher import BatchFatalError, BatchOutcome, ChunkedDispatcher

logger = logging.getLogger(__name__)

NO_MESSAGES_MESSAGE = "No messages to analyze"
CONTINUATION_SELECTION = (AnalysisStatus.PENDING,)


@dataclass
class BatchRunResult:
    """Outcome of one tracked batch run."""

    job_id: str
    status: JobStatus
    outcome: BatchOutcome
    chain_depth: int = 0
    continuation_scheduled: bool = False

    @property
    def message(self) -> Optional[str]:
        return NO_MESSAGES_MESSAGE if self.outcome.processed == 0 else None

    def to_response(self) -> Dict[str, Any]:
        """Envelope returned to start-batch callers."""
        payload: Dict[str, Any] = {
            "success": True,
            "job_id": self.job_id,
            "batch_id": self.outcome.batch_id,
            "status": self.status.value,
            "processed": self.outcome.processed,
            "success_count": self.outcome.success_count,
            "failure_count": self.outcome.error_count,
            "errors": list(self.outcome.errors),
            "continuation_scheduled": self.continuation_scheduled,
        }
        if self.message:
            payload["message"] = self.message
        return payload


class BatchAnalysisJob:
    """Runs tracked analysis batches and their continuation chain."""

    def __init__(
        self,
        dispatcher: ChunkedDispatcher,
        tracker: JobTracker,
        store,
        settings: AnalysisSettings,
        *,
        metrics: Optional[MetricsRecorder] = None,
        job_type: JobType = JobType.BATCH_ANALYSIS,
    ):
        self.dispatcher = dispatcher
        self.tracker = tracker
        self.store = store
        self.settings = settings
        self.metrics = metrics
        self.job_type = job_type
        self._continuations: Set[asyncio.Task] = set()
        self.chain_results: List[BatchRunResult] = []

    async def run(
        self,
        batch_size: Optional[int] = None,
        force_reanalysis: Optional[bool] = None,
    ) -> BatchRunResult:
        """
        Run one externally triggered batch.

        Args:
            batch_size: Override for ``settings.batch_size``
            force_reanalysis: Select regardless of status when True

        Returns:
            BatchRunResult for this run only; continuation runs report
            through the job table (and ``chain_results``)

        Raises:
            JobTrackingError: If the job row cannot be created or closed
            BatchFatalError: If the batch aborted (job is marked failed)
        """
        size = batch_size or self.settings.batch_size
        force = self.settings.force_reanalysis if force_reanalysis is None else force_reanalysis
        statuses = None if force else DEFAULT_SELECTION

        result = await self._run_once(size, statuses, chain_depth=0)

        if self._wants_continuation(result) and self.settings.max_chain_depth > 0:
            if await self._pending_remaining():
                self._schedule_continuation(size)
                result.continuation_scheduled = True
        return result

    async def wait_for_continuations(self) -> None:
        """Block until every scheduled continuation chain has finished."""
        while self._continuations:
            tasks = list(self._continuations)
            self._continuations.clear()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_once(
        self,
        batch_size: int,
        statuses: Optional[Sequence[AnalysisStatus]],
        chain_depth: int,
    ) -> BatchRunResult:
        await self.tracker.reclaim_stale(self.job_type)
        job = await self.tracker.start(self.job_type, batch_size)

        try:
            outcome = await self.dispatcher.run_batch(batch_size, statuses)
        except Exception as exc:
            logger.exception(f"Batch for job {job.id} aborted")
            try:
                await self.tracker.fail(job.id, str(exc) or exc.__class__.__name__)
            except Exception as track_exc:
                logger.error(f"Could not mark job {job.id} as failed: {track_exc}")
            if isinstance(exc, BatchFatalError):
                raise
            raise BatchFatalError(f"Batch aborted: {exc}") from exc

        await self.tracker.finish(
            job.id,
            processed=outcome.processed,
            success_count=outcome.success_count,
            error_count=outcome.error_count,
            error_detail=outcome.error_detail(),
        )
        status = derive_terminal_status(outcome.success_count, outcome.error_count)

        if outcome.processed and self.metrics is not None:
            await self.metrics.record(
                BATCH_ANALYSIS_COMPLETED,
                outcome.success_count,
                {
                    "batch_id": outcome.batch_id,
                    "job_id": job.id,
                    "total_emails": outcome.processed,
                    "success_count": outcome.success_count,
                    "failure_count": outcome.error_count,
                    "chain_depth": chain_depth,
                },
            )

        return BatchRunResult(job_id=job.id, status=status, outcome=outcome, chain_depth=chain_depth)

    def _wants_continuation(self, result: BatchRunResult) -> bool:
        return result.outcome.success_count > 0 and result.outcome.filled_batch

    async def _pending_remaining(self) -> bool:
        try:
            return await self.store.has_pending()
        except Exception as exc:
            logger.warning(f"Pending lookup failed, not continuing: {exc}")
            return False

    def _schedule_continuation(self, batch_size: int) -> None:
        task = asyncio.create_task(self._continue_chain(batch_size))
        self._continuations.add(task)
        logger.info("Scheduled continuation batch")

    async def _continue_chain(self, batch_size: int) -> None:
        """Run follow-up batches until the backlog drains or the depth cap is hit."""
        depth = 0
        while depth < self.settings.max_chain_depth:
            depth += 1
            try:
                result = await self._run_once(batch_size, CONTINUATION_SELECTION, chain_depth=depth)
            except Exception as exc:
                logger.error(f"Continuation batch {depth} failed, stopping chain: {exc}")
                return

            self.chain_results.append(result)
            logger.info(
                f"Continuation batch {depth} finished: job={result.job_id}, "
                f"status={result.status.value}, processed={result.outcome.processed}"
            )
            if not self._wants_continuation(result) or not await self._pending_remaining():
                return

        logger.warning(
            f"Continuation chain stopped at max depth {self.settings.max_chain_depth}; "
            "remaining messages wait for the next trigger"
        )
