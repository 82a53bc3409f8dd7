"""Cloud Function entry point for the message analysis job engine."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, Mapping, Optional, Tuple

import flask
import functions_framework

from src.shared.batch import JobTracker, JobTrackingError
from src.shared.utils.env import load_env
from src.shared.utils.logging import setup_logging

from src.functions.message_analysis.core.factory import build_analysis_settings
from src.functions.message_analysis.core.pipelines import BatchFatalError
from src.functions.message_analysis.core.service import build_batch_job, build_orchestrator

load_env()
setup_logging(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

ACTION_START_BATCH = "start-batch"
ACTION_JOB_STATUS = "job-status"
ACTION_RUN_PIPELINE = "run-pipeline"

HandlerResult = Tuple[Dict[str, Any], int]


def handle_start_batch(payload: Optional[Mapping[str, Any]] = None) -> HandlerResult:
    """Run one tracked analysis batch, draining any continuation before returning."""
    settings = build_analysis_settings(payload)
    logger.info(
        "Incoming start-batch request (batch_size=%d, force_reanalysis=%s)",
        settings.batch_size,
        settings.force_reanalysis,
    )

    async def _run() -> Dict[str, Any]:
        job = build_batch_job(settings)
        try:
            result = await job.run()
        finally:
            await job.wait_for_continuations()
        return result.to_response()

    try:
        return _run_async(_run()), 200
    except (BatchFatalError, JobTrackingError) as exc:
        logger.error("Batch analysis failed: %s", exc)
        return {"success": False, "error": str(exc)}, 500


def handle_job_status(job_type: Optional[str] = None) -> HandlerResult:
    """Return the most recent job row as ``current_job``."""
    tracker = JobTracker()
    job = _run_async(tracker.latest(job_type))
    return {"success": True, "current_job": job.to_dict() if job else None}, 200


def handle_run_pipeline(payload: Optional[Mapping[str, Any]] = None) -> HandlerResult:
    """Run refresh -> sync -> analyze -> profile updates as one run."""
    orchestrator = build_orchestrator(payload)
    run = _run_async(orchestrator.run())
    body = run.to_response()
    return body, 200 if run.success else 500


def message_analysis_handler(request: flask.Request) -> flask.Response:
    """HTTP handler dispatching on ``action`` (body field or query parameter)."""

    if request.method == "OPTIONS":
        return _cors_response({}, status=204)

    if request.method not in ("POST", "GET"):
        logger.warning("Unsupported HTTP method: %s", request.method)
        return _error_response("Method not allowed. Use POST.", status=405)

    try:
        payload = request.get_json(silent=True) or {}
        if not isinstance(payload, dict):
            raise ValueError("Request body must be a JSON object")
        action = str(payload.get("action") or request.args.get("action") or ACTION_START_BATCH)

        if action == ACTION_START_BATCH:
            body, status = handle_start_batch(payload)
        elif action == ACTION_JOB_STATUS:
            body, status = handle_job_status(payload.get("job_type"))
        elif action == ACTION_RUN_PIPELINE:
            body, status = handle_run_pipeline(payload)
        else:
            raise ValueError(f"Unknown action: {action}")

        return _cors_response(body, status=status)

    except ValueError as exc:
        logger.warning("Invalid request: %s", exc)
        return _error_response(str(exc), status=400)
    except Exception as exc:  # noqa: BLE001
        logger.error("Unexpected failure", exc_info=True)
        return _error_response(f"Internal server error: {exc}", status=500)


def health_check_handler(request: flask.Request) -> flask.Response:
    """Health check endpoint."""
    return _cors_response({"status": "healthy", "service": "message_analysis"})


def _cors_response(body: dict[str, Any], status: int = 200) -> flask.Response:
    """Create a CORS-enabled JSON response."""
    response = flask.make_response(json.dumps(body, ensure_ascii=False, default=str), status)
    headers = response.headers
    headers["Content-Type"] = "application/json"
    headers["Access-Control-Allow-Origin"] = "*"
    headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
    headers["Access-Control-Allow-Headers"] = "authorization, x-client-info, apikey, content-type"
    return response


def _error_response(message: str, status: int) -> flask.Response:
    """Create an error response with CORS headers."""
    return _cors_response({"success": False, "error": message}, status=status)


def _run_async(coro):
    """Run an async coroutine in a new or existing event loop."""
    try:
        return asyncio.run(coro)
    except RuntimeError as exc:
        if "event loop" in str(exc).lower():
            loop = asyncio.new_event_loop()
            try:
                asyncio.set_event_loop(loop)
                return loop.run_until_complete(coro)
            finally:
                loop.close()
        raise


@functions_framework.http
def message_analysis(request: flask.Request):
    """Entry point for functions-framework."""
    return message_analysis_handler(request)


@functions_framework.http
def health_check(request: flask.Request):
    """Health check entry point."""
    return health_check_handler(request)
