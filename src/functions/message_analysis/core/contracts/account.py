"""Mailbox account contract (source credentials and sync bookkeeping)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class MailboxAccount:
    """A connected mailbox row from the accounts table."""

    id: str
    email: str = ""
    provider: str = "gmail"
    user_id: Optional[str] = None
    is_active: bool = True
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    last_sync_timestamp: Optional[datetime] = None
    sync_status: Optional[str] = None
    sync_error_count: int = 0
    quota_usage: int = 0
    last_quota_reset: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MailboxAccount":
        return cls(
            id=str(row["id"]),
            email=row.get("email") or "",
            provider=row.get("provider") or "gmail",
            user_id=row.get("user_id"),
            is_active=bool(row.get("is_active", True)),
            access_token=row.get("access_token"),
            refresh_token=row.get("refresh_token"),
            token_expires_at=parse_timestamp(row.get("token_expires_at")),
            last_sync_timestamp=parse_timestamp(row.get("last_sync_timestamp")),
            sync_status=row.get("sync_status"),
            sync_error_count=int(row.get("sync_error_count") or 0),
            quota_usage=int(row.get("quota_usage") or 0),
            last_quota_reset=parse_timestamp(row.get("last_quota_reset")),
        )


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp; naive values are taken as UTC."""
    if isinstance(value, str) and value:
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
