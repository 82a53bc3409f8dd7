"""
Full pipeline run: refresh -> sync -> analyze -> profile updates.

Refresh and sync failures are stage-local: they are logged, reported in
their stage result and the next stage still runs. The profile stage only
runs after a successful analysis stage. One summary metric is written per
run, plus one error metric per stage that raised.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..monitoring import CRON_JOB_COMPLETED, CRON_JOB_ERROR, MetricsRecorder
from .batch_job import BatchAnalysisJob

logger = logging.getLogger(__name__)

STAGE_TOKEN_REFRESH = "token_refresh"
STAGE_EMAIL_SYNC = "email_sync"
STAGE_ANALYSIS = "analysis"
STAGE_PROFILES = "profiles"


@dataclass
class StageResult:
    """Outcome of one pipeline stage."""

    name: str
    success: bool
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        if self.skipped:
            return {"success": False, "skipped": True, "reason": self.error}
        if not self.success:
            return {"success": False, "error": self.error}
        return dict(self.result or {"success": True})


@dataclass
class PipelineRunResult:
    """Stage results of one orchestrated run."""

    stages: List[StageResult] = field(default_factory=list)
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def stage(self, name: str) -> Optional[StageResult]:
        return next((stage for stage in self.stages if stage.name == name), None)

    @property
    def success(self) -> bool:
        analysis = self.stage(STAGE_ANALYSIS)
        return analysis is not None and analysis.success

    def to_response(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "message": (
                "Pipeline run completed"
                if self.success
                else "Pipeline run finished with a failed analysis stage"
            ),
        }
        for stage in self.stages:
            payload[stage.name] = stage.to_dict()
        return payload


class PipelineOrchestrator:
    """Sequences the pipeline stages as one observable run."""

    def __init__(
        self,
        *,
        token_refresher,
        mailbox_sync,
        batch_job: BatchAnalysisJob,
        profile_updater,
        metrics: MetricsRecorder,
        analysis_batch_size: int = 50,
    ):
        """
        Args:
            token_refresher: Stage object with ``async run() -> dict``
            mailbox_sync: Stage object with ``async run() -> dict``
            batch_job: Tracked batch analysis runner
            profile_updater: Stage object with ``async run() -> dict``
            metrics: Metric event recorder
            analysis_batch_size: Batch size requested by the analysis stage
        """
        self.token_refresher = token_refresher
        self.mailbox_sync = mailbox_sync
        self.batch_job = batch_job
        self.profile_updater = profile_updater
        self.metrics = metrics
        self.analysis_batch_size = analysis_batch_size

    async def run(self) -> PipelineRunResult:
        run = PipelineRunResult()
        logger.info("Starting pipeline run")

        logger.info("Step 1: Refreshing expiring tokens...")
        run.stages.append(await self._run_stage(STAGE_TOKEN_REFRESH, self.token_refresher.run))

        logger.info("Step 2: Syncing mailboxes...")
        run.stages.append(await self._run_stage(STAGE_EMAIL_SYNC, self.mailbox_sync.run))

        logger.info("Step 3: Analyzing messages...")
        analysis = await self._run_stage(STAGE_ANALYSIS, self._run_analysis)
        run.stages.append(analysis)

        if analysis.success:
            logger.info("Step 4: Updating customer profiles...")
            run.stages.append(await self._run_stage(STAGE_PROFILES, self.profile_updater.run))
        else:
            logger.warning("Skipping profile updates because the analysis stage failed")
            run.stages.append(
                StageResult(
                    name=STAGE_PROFILES,
                    success=False,
                    skipped=True,
                    error="analysis stage failed",
                )
            )

        await self.metrics.record(
            CRON_JOB_COMPLETED,
            1,
            {
                **{stage.name: stage.to_dict() for stage in run.stages},
                "success": run.success,
                "started_at": run.started_at,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
        logger.info(f"Pipeline run finished (success={run.success})")
        return run

    async def _run_analysis(self) -> Dict[str, Any]:
        result = await self.batch_job.run(batch_size=self.analysis_batch_size, force_reanalysis=False)
        payload = result.to_response()
        if result.continuation_scheduled:
            await self.batch_job.wait_for_continuations()
            payload["continuation_runs"] = [
                {
                    "job_id": chained.job_id,
                    "status": chained.status.value,
                    "processed": chained.outcome.processed,
                    "success_count": chained.outcome.success_count,
                    "failure_count": chained.outcome.error_count,
                }
                for chained in self.batch_job.chain_results
            ]
        return payload

    async def _run_stage(
        self,
        name: str,
        stage: Callable[[], Awaitable[Dict[str, Any]]],
    ) -> StageResult:
        try:
            result = await stage()
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.exception(f"Pipeline stage {name} failed")
            await self.metrics.record(
                CRON_JOB_ERROR,
                1,
                {
                    "stage": name,
                    "error": error,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )
            return StageResult(name=name, success=False, error=error)
        return StageResult(name=name, success=True, result=result)
