"""Deployment wrapper for the message analysis Cloud Function."""

from __future__ import annotations

import sys
from pathlib import Path

import flask

project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from src.functions.message_analysis.functions.main import (
    health_check_handler,
    message_analysis_handler,
)


def message_analysis(request: flask.Request) -> flask.Response:
    """Cloud Function entry point (start-batch, job-status, run-pipeline)."""
    return message_analysis_handler(request)


def health_check(request: flask.Request) -> flask.Response:
    return health_check_handler(request)
