"""Source sync stage: pull new inbox messages into the item store."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ..config import SyncSettings
from ..contracts import MailboxAccount
from ..db import AccountStore, MessageStore
from .gmail_client import GmailClient, GmailMessage
from .tenant import TenantClassifier, classify_tenant

logger = logging.getLogger(__name__)

QUOTA_RESET_INTERVAL = timedelta(hours=24)


class MailboxSync:
    """Synchronises every active mailbox, one account at a time.

    An account that fails is recorded with an incremented error counter and
    the run moves on to the next account.
    """

    def __init__(
        self,
        settings: SyncSettings,
        accounts: AccountStore,
        messages: MessageStore,
        *,
        classifier: TenantClassifier = classify_tenant,
        http_client: Optional[httpx.AsyncClient] = None,
        client_factory: Optional[Callable[[httpx.AsyncClient, str], GmailClient]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._accounts = accounts
        self._messages = messages
        self._classifier = classifier
        self._http = http_client
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep

    def _default_client(self, http_client: httpx.AsyncClient, access_token: str) -> GmailClient:
        return GmailClient(http_client, access_token, base_url=self._settings.api_base_url)

    async def run(self) -> Dict[str, Any]:
        accounts = await self._accounts.active_accounts()
        if not accounts:
            logger.info("No active mailbox accounts to sync")
            return {
                "success": True,
                "message": "No active accounts to sync",
                "accounts_processed": 0,
                "successful_syncs": 0,
                "total_messages": 0,
                "results": [],
            }

        results: List[Dict[str, Any]] = []
        owns_client = self._http is None
        http_client = self._http or httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=5.0))
        try:
            for index, account in enumerate(accounts):
                if index:
                    await self._sleep(self._settings.account_delay_seconds)
                results.append(await self._sync_account(http_client, account))
        finally:
            if owns_client:
                await http_client.aclose()

        successful = sum(1 for entry in results if entry["status"] == "success")
        total_messages = sum(entry.get("message_count", 0) for entry in results)
        logger.info(
            f"Sync completed: {successful}/{len(accounts)} accounts, {total_messages} new message(s)"
        )
        return {
            "success": True,
            "message": "Automated sync completed",
            "accounts_processed": len(accounts),
            "successful_syncs": successful,
            "total_messages": total_messages,
            "results": results,
        }

    async def _sync_account(self, http_client: httpx.AsyncClient, account: MailboxAccount) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        try:
            await self._accounts.update(account.id, {"sync_status": "syncing"})

            quota_usage = account.quota_usage
            if account.last_quota_reset is None or account.last_quota_reset < now - QUOTA_RESET_INTERVAL:
                quota_usage = 0
                await self._accounts.update(
                    account.id, {"quota_usage": 0, "last_quota_reset": now.isoformat()}
                )

            if quota_usage > self._settings.quota_ceiling:
                logger.info(f"Skipping {account.email}: quota limit reached")
                await self._accounts.update(account.id, {"sync_status": "quota_limited"})
                return {"email": account.email, "status": "quota_limited"}

            if not account.access_token:
                raise ValueError("Account has no access token")

            since = None
            if account.last_sync_timestamp is not None:
                since = account.last_sync_timestamp - timedelta(minutes=self._settings.overlap_minutes)

            client = self._client_factory(http_client, account.access_token)
            fetched = await client.fetch_messages(since, self._settings.max_results)
            inserted = await self._messages.insert_new_messages(
                [self._to_row(message) for message in fetched]
            )

            await self._accounts.update(
                account.id,
                {
                    "sync_status": "idle",
                    "last_sync_timestamp": now.isoformat(),
                    "quota_usage": quota_usage + client.quota_used,
                    "sync_error_count": 0,
                    "last_sync_error": None,
                },
            )
        except Exception as exc:
            return await self._record_failure(account, exc)

        logger.info(f"Synced {account.email}: {len(fetched)} fetched, {inserted} new")
        return {
            "email": account.email,
            "status": "success",
            "fetched": len(fetched),
            "message_count": inserted,
            "quota_used": client.quota_used,
        }

    async def _record_failure(self, account: MailboxAccount, exc: Exception) -> Dict[str, Any]:
        error_count = account.sync_error_count + 1
        status = "error" if error_count >= self._settings.max_sync_errors else "idle"
        logger.warning(f"Sync failed for {account.email} ({error_count} consecutive): {exc}")
        try:
            await self._accounts.update(
                account.id,
                {
                    "sync_status": status,
                    "sync_error_count": error_count,
                    "last_sync_error": str(exc) or exc.__class__.__name__,
                },
            )
        except Exception as update_exc:
            logger.error(f"Could not record sync failure for {account.id}: {update_exc}")
        return {"email": account.email, "status": "error", "error": str(exc)}

    def _to_row(self, message: GmailMessage) -> Dict[str, Any]:
        return {
            "external_id": message.external_id,
            "subject": message.subject,
            "from_address": message.from_address,
            "to_address": message.to_address,
            "body": message.body,
            "brand": self._classifier(message.headers),
            "received_at": message.received_at.isoformat(),
            "direction": "incoming",
            "thread_id": message.thread_id,
        }
