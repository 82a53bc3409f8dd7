"""Append-only metric events for batch runs and pipeline runs."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from src.shared.db import execute_async, get_supabase_client

logger = logging.getLogger(__name__)

BATCH_ANALYSIS_COMPLETED = "batch_analysis_completed"
TOKEN_REFRESH_COMPLETED = "token_refresh_completed"
CRON_JOB_COMPLETED = "cron_job_completed"
CRON_JOB_ERROR = "cron_job_error"


class MetricsRecorder:
    """Writes metric rows to the metrics table.

    Recording is best effort: a failed insert is logged and swallowed so an
    observability outage never changes the outcome of the run it describes.
    """

    def __init__(self, client=None, table_name: str = "ai_performance_metrics") -> None:
        self._client = client
        self.table_name = table_name

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    async def record(
        self,
        metric_type: str,
        metric_value: float,
        context: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Insert one metric event. Returns False when the insert failed."""
        row = {
            "metric_type": metric_type,
            "metric_value": metric_value,
            "context": _jsonable(context or {}),
            "measured_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await execute_async(self.client.table(self.table_name).insert(row))
        except Exception as exc:
            logger.error(f"Failed to record metric {metric_type}: {exc}")
            return False
        return True


def _jsonable(context: Mapping[str, Any]) -> Dict[str, Any]:
    # Round-trip so datetimes and enums land as plain JSON values
    return json.loads(json.dumps(dict(context), default=str))
