#!/usr/bin/env python3
"""
Command-line interface for the message analysis job engine.

Examples:
    # Analyze up to 20 pending/failed messages (continuations included)
    python src/functions/message_analysis/scripts/analysis_cli.py start-batch --batch-size 20

    # Re-analyze the 10 newest messages regardless of status
    python src/functions/message_analysis/scripts/analysis_cli.py start-batch --batch-size 10 --force

    # Show the latest jobs
    python src/functions/message_analysis/scripts/analysis_cli.py status --limit 5

    # Run refresh -> sync -> analyze -> profiles once
    python src/functions/message_analysis/scripts/analysis_cli.py pipeline

    # Put messages back in the queue
    python src/functions/message_analysis/scripts/analysis_cli.py requeue <message-id> [<message-id> ...]

    # List (or reclaim) jobs stuck in running
    python src/functions/message_analysis/scripts/analysis_cli.py reclaim --dry-run
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

# Bootstrap to add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[4]))

from src.shared.batch import JobTracker, JobTrackingError, JobType
from src.shared.utils.env import load_env
from src.shared.utils.logging import setup_logging
from src.functions.message_analysis.core.db import MessageStore
from src.functions.message_analysis.core.factory import build_analysis_settings
from src.functions.message_analysis.core.pipelines import BatchFatalError
from src.functions.message_analysis.core.service import build_batch_job, build_orchestrator

logger = logging.getLogger(__name__)


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _start_batch(args: argparse.Namespace) -> int:
    payload = {"force_reanalysis": args.force}
    if args.batch_size is not None:
        payload["batch_size"] = args.batch_size
    settings = build_analysis_settings(payload)

    job = build_batch_job(settings)
    try:
        result = await job.run()
    except (BatchFatalError, JobTrackingError) as exc:
        logger.error(f"Batch failed: {exc}")
        _print_json({"success": False, "error": str(exc)})
        return 1

    _print_json(result.to_response())
    if result.continuation_scheduled:
        print("Waiting for continuation batches...")
        await job.wait_for_continuations()
        for chained in job.chain_results:
            print(
                f"  job {chained.job_id}: {chained.status.value} "
                f"({chained.outcome.success_count}/{chained.outcome.processed} succeeded)"
            )
    return 0


async def _status(args: argparse.Namespace) -> int:
    tracker = JobTracker()
    jobs = await tracker.recent(args.job_type, limit=args.limit)
    if not jobs:
        print("No jobs found")
        return 0

    print(f"{'ID':<38} {'TYPE':<16} {'STATUS':<10} {'PROC':>5} {'OK':>5} {'ERR':>5}  STARTED")
    print("-" * 100)
    for job in jobs:
        started = job.start_time.strftime("%Y-%m-%d %H:%M:%S") if job.start_time else "-"
        print(
            f"{job.id:<38} {job.job_type:<16} {job.status.value:<10} "
            f"{job.items_processed:>5} {job.success_count:>5} {job.error_count:>5}  {started}"
        )
    return 0


async def _pipeline(args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator()
    run = await orchestrator.run()
    _print_json(run.to_response())
    return 0 if run.success else 1


async def _reclaim(args: argparse.Namespace) -> int:
    tracker = JobTracker()
    running = await tracker.running(args.job_type)
    if not running:
        print(f"No running {args.job_type} jobs")
        return 0

    print(f"Found {len(running)} running {args.job_type} job(s):")
    for job in running:
        print(f"  {job.id} started {job.start_time}")

    if args.dry_run:
        print("DRY RUN - nothing changed")
        return 0

    reclaimed = await tracker.reclaim_stale(args.job_type)
    print(f"Reclaimed {reclaimed} job(s)")
    return 0


async def _requeue(args: argparse.Namespace) -> int:
    store = MessageStore()
    requeued = await store.requeue(args.message_ids)
    print(f"Requeued {requeued} of {len(args.message_ids)} message(s) as pending")
    return 0 if requeued else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Message analysis job engine")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser("start-batch", help="Run one tracked analysis batch")
    start.add_argument("--batch-size", type=int, help="Messages per batch (default: 20)")
    start.add_argument(
        "--force",
        action="store_true",
        help="Re-analyze the newest messages regardless of status",
    )
    start.set_defaults(handler=_start_batch)

    status = subparsers.add_parser("status", help="Show recent jobs")
    status.add_argument("--limit", type=int, default=10, help="Number of jobs (default: 10)")
    status.add_argument("--job-type", type=str, default=None, help="Only show this job type")
    status.set_defaults(handler=_status)

    pipeline = subparsers.add_parser("pipeline", help="Run refresh -> sync -> analyze -> profiles")
    pipeline.set_defaults(handler=_pipeline)

    reclaim = subparsers.add_parser("reclaim", help="Mark running jobs as failed")
    reclaim.add_argument(
        "--job-type",
        type=str,
        default=JobType.BATCH_ANALYSIS.value,
        help="Job type to reclaim (default: batch_analysis)",
    )
    reclaim.add_argument("--dry-run", action="store_true", help="Only list running jobs")
    reclaim.set_defaults(handler=_reclaim)

    requeue = subparsers.add_parser("requeue", help="Return messages to pending for re-analysis")
    requeue.add_argument("message_ids", nargs="+", help="Message ids to requeue")
    requeue.set_defaults(handler=_requeue)

    args = parser.parse_args(argv)

    load_env()
    setup_logging(level="DEBUG" if args.verbose else None)

    try:
        return asyncio.run(args.handler(args))
    except ValueError as exc:
        logger.error(f"Invalid configuration: {exc}")
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
