"""
Database writer for the email_analytics table.

One row per message: re-analysis replaces the existing row through an upsert
keyed on ``email_id``.
"""

import logging

from src.shared.db import execute_async, get_supabase_client

from ..contracts import MessageAnalysis

logger = logging.getLogger(__name__)


class AnalysisWriter:
    """Upserts analysis results keyed by message id."""

    CONFLICT_KEY = "email_id"

    def __init__(self, client=None, table_name: str = "email_analytics"):
        self._client = client
        self.table_name = table_name

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    async def upsert(self, message_id: str, analysis: MessageAnalysis, batch_id: str) -> None:
        """
        Write or replace the analysis row for ``message_id``.

        Raises:
            Exception: Propagates storage errors so the caller can fail the item
        """
        record = analysis.to_record(message_id, batch_id)
        await execute_async(
            self.client.table(self.table_name).upsert(record, on_conflict=self.CONFLICT_KEY)
        )
        logger.debug(f"Stored analysis for message {message_id} (batch {batch_id})")
