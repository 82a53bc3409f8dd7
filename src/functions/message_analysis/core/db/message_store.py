"""
Item store for the email_history table.

Reads messages that need analysis and moves them through the
pending -> processing -> completed/failed status machine.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from src.shared.db import execute_async, get_supabase_client

from ..contracts import AnalysisStatus, MessageItem

logger = logging.getLogger(__name__)

_SELECT_COLUMNS = (
    "id, subject, from_address, to_address, body, received_at, analysis_status, customer_id"
)

DEFAULT_SELECTION = (AnalysisStatus.PENDING, AnalysisStatus.FAILED)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MessageStore:
    """Async access to message rows and their analysis status."""

    def __init__(self, client=None, table_name: str = "email_history"):
        self._client = client
        self.table_name = table_name

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    async def select_for_analysis(
        self,
        limit: int,
        statuses: Optional[Sequence[AnalysisStatus]] = DEFAULT_SELECTION,
    ) -> List[MessageItem]:
        """
        Fetch up to ``limit`` messages, newest first.

        Args:
            limit: Maximum number of rows
            statuses: Status filter; ``None`` ignores status (force re-analysis)

        Returns:
            List of MessageItem instances
        """
        query = (
            self.client.table(self.table_name)
            .select(_SELECT_COLUMNS)
            .order("received_at", desc=True)
            .limit(limit)
        )
        if statuses is not None:
            query = query.in_("analysis_status", [AnalysisStatus(s).value for s in statuses])

        response = await execute_async(query)
        items = [MessageItem.from_row(row) for row in (response.data or [])]
        logger.info(f"Selected {len(items)} message(s) for analysis (limit={limit})")
        return items

    async def mark_processing(self, message_ids: Sequence[str]) -> None:
        """Claim every message in one write by setting ``processing`` and a timestamp."""
        if not message_ids:
            return
        await execute_async(
            self.client.table(self.table_name)
            .update({
                "analysis_status": AnalysisStatus.PROCESSING.value,
                "last_analyzed": _now_iso(),
            })
            .in_("id", list(message_ids))
        )
        logger.debug(f"Marked {len(message_ids)} message(s) as processing")

    async def set_status(self, message_id: str, status: AnalysisStatus) -> None:
        await execute_async(
            self.client.table(self.table_name)
            .update({"analysis_status": AnalysisStatus(status).value, "last_analyzed": _now_iso()})
            .eq("id", message_id)
        )

    async def has_pending(self) -> bool:
        """Return True when at least one message is still ``pending``."""
        response = await execute_async(
            self.client.table(self.table_name)
            .select("id")
            .eq("analysis_status", AnalysisStatus.PENDING.value)
            .limit(1)
        )
        return bool(response.data)

    async def requeue(self, message_ids: Sequence[str]) -> int:
        """Explicitly return messages to ``pending``."""
        if not message_ids:
            return 0
        response = await execute_async(
            self.client.table(self.table_name)
            .update({"analysis_status": AnalysisStatus.PENDING.value})
            .in_("id", list(message_ids))
        )
        return len(response.data or [])

    async def recent_completed_customer_ids(self, since: datetime) -> List[str]:
        """Distinct customer ids of messages analyzed successfully since ``since``."""
        response = await execute_async(
            self.client.table(self.table_name)
            .select("customer_id")
            .eq("analysis_status", AnalysisStatus.COMPLETED.value)
            .gte("last_analyzed", since.isoformat())
            .not_.is_("customer_id", "null")
        )
        seen: Dict[str, None] = {}
        for row in response.data or []:
            customer_id = row.get("customer_id")
            if customer_id is not None:
                seen.setdefault(str(customer_id), None)
        return list(seen)

    async def existing_external_ids(self, external_ids: Iterable[str]) -> set:
        ids = [value for value in external_ids if value]
        if not ids:
            return set()
        response = await execute_async(
            self.client.table(self.table_name).select("external_id").in_("external_id", ids)
        )
        return {row["external_id"] for row in (response.data or []) if row.get("external_id")}

    async def insert_new_messages(self, rows: Sequence[Dict[str, Any]]) -> int:
        """
        Insert messages whose ``external_id`` is not stored yet.

        New rows always enter as ``pending``.

        Returns:
            Number of rows inserted
        """
        if not rows:
            return 0

        existing = await self.existing_external_ids(row.get("external_id") for row in rows)
        fresh: List[Dict[str, Any]] = []
        seen = set(existing)
        for row in rows:
            external_id = row.get("external_id")
            if not external_id or external_id in seen:
                continue
            seen.add(external_id)
            fresh.append({**row, "analysis_status": AnalysisStatus.PENDING.value})

        if not fresh:
            logger.debug("No new messages to insert")
            return 0

        response = await execute_async(self.client.table(self.table_name).insert(fresh))
        inserted = len(response.data or [])
        logger.info(f"Inserted {inserted} new message(s) ({len(rows) - len(fresh)} already stored)")
        return inserted
