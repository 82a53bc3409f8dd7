"""
Database access for the email_accounts table.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from src.shared.db import execute_async, get_supabase_client

from ..contracts.account import MailboxAccount

logger = logging.getLogger(__name__)


class AccountStore:
    """Reads connected mailboxes and writes their token/sync bookkeeping."""

    def __init__(self, client=None, table_name: str = "email_accounts"):
        self._client = client
        self.table_name = table_name

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    async def expiring_accounts(self, expires_before: datetime, provider: str = "gmail") -> List[MailboxAccount]:
        """Active accounts with a refresh token whose access token expires before the cutoff."""
        response = await execute_async(
            self.client.table(self.table_name)
            .select("*")
            .eq("provider", provider)
            .eq("is_active", True)
            .lt("token_expires_at", expires_before.isoformat())
            .not_.is_("refresh_token", "null")
        )
        accounts = [MailboxAccount.from_row(row) for row in (response.data or [])]
        logger.info(f"Found {len(accounts)} account(s) with expiring tokens")
        return accounts

    async def active_accounts(self) -> List[MailboxAccount]:
        response = await execute_async(
            self.client.table(self.table_name).select("*").eq("is_active", True)
        )
        return [MailboxAccount.from_row(row) for row in (response.data or [])]

    async def update(self, account_id: str, fields: Dict[str, Any]) -> None:
        payload = {**fields, "updated_at": datetime.now(timezone.utc).isoformat()}
        await execute_async(
            self.client.table(self.table_name).update(payload).eq("id", account_id)
        )
