"""Item contract: one inbound message awaiting or holding analysis."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class AnalysisStatus(str, Enum):
    """Per-message analysis state.

    Within one job attempt a message only moves forward:
    pending -> processing -> completed | failed. Going back to pending
    requires an explicit re-queue.
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MessageItem:
    """A message row selected for analysis."""

    id: str
    subject: str = ""
    from_address: str = ""
    to_address: str = ""
    body: str = ""
    received_at: Optional[str] = None
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    customer_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MessageItem":
        status = row.get("analysis_status") or AnalysisStatus.PENDING.value
        customer_id = row.get("customer_id")
        return cls(
            id=str(row["id"]),
            subject=row.get("subject") or "",
            from_address=row.get("from_address") or "",
            to_address=row.get("to_address") or "",
            body=row.get("body") or "",
            received_at=_iso(row.get("received_at")),
            analysis_status=AnalysisStatus(status),
            customer_id=str(customer_id) if customer_id is not None else None,
        )

    def to_analysis_text(self) -> str:
        """Render the message as the text block handed to the analyzer."""
        return "\n".join(
            [
                f"Subject: {self.subject or 'No subject'}",
                f"From: {self.from_address or 'Unknown sender'}",
                f"To: {self.to_address or 'Unknown recipient'}",
                f"Date: {self.received_at or 'Unknown date'}",
                f"Body: {self.body or 'No content'}",
            ]
        )


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
