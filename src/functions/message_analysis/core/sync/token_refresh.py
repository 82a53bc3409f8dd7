"""Credential refresh stage: renew mailbox access tokens before they expire."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from ..config import GmailOAuthConfig
from ..contracts import MailboxAccount
from ..db import AccountStore
from ..monitoring import TOKEN_REFRESH_COMPLETED, MetricsRecorder

logger = logging.getLogger(__name__)


class TokenRefreshError(RuntimeError):
    """Raised when one account's token cannot be refreshed."""


class TokenRefresher:
    """Refreshes OAuth access tokens for accounts close to expiry.

    A failed refresh deactivates that account and is reported in the
    results; it never stops the other accounts.
    """

    def __init__(
        self,
        config: Union[GmailOAuthConfig, Callable[[], GmailOAuthConfig]],
        accounts: AccountStore,
        *,
        metrics: Optional[MetricsRecorder] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Args:
            config: OAuth client settings, or a zero-argument loader that
                builds them when the stage runs (so missing credentials fail
                this stage only)
            accounts: Account store
            metrics: Optional metric event recorder
            http_client: Injected client; otherwise one is owned per run
        """
        self._config_source = config
        self._config: Optional[GmailOAuthConfig] = None
        self._accounts = accounts
        self._metrics = metrics
        self._http = http_client

    def _resolve_config(self) -> GmailOAuthConfig:
        if self._config is None:
            source = self._config_source
            self._config = source() if callable(source) else source
        return self._config

    async def run(self) -> Dict[str, Any]:
        """Refresh every expiring account and return the stage summary.

        Raises:
            ValueError: If the OAuth client settings are missing or invalid
        """
        config = self._resolve_config()
        now = datetime.now(timezone.utc)
        cutoff = now + timedelta(minutes=config.refresh_window_minutes)
        expiring = await self._accounts.expiring_accounts(cutoff)

        results: List[Dict[str, Any]] = []
        owns_client = self._http is None
        client = self._http or httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=5.0))
        try:
            for account in expiring:
                results.append(await self._refresh_account(client, account))
        finally:
            if owns_client:
                await client.aclose()

        success_count = sum(1 for entry in results if entry["status"] == "success")
        failure_count = len(results) - success_count
        summary = {
            "success": True,
            "processed": len(results),
            "success_count": success_count,
            "failure_count": failure_count,
            "results": results,
        }

        if self._metrics is not None:
            await self._metrics.record(
                TOKEN_REFRESH_COMPLETED,
                success_count,
                {
                    "total_accounts": len(results),
                    "success_count": success_count,
                    "failure_count": failure_count,
                    "results": results,
                },
            )
        logger.info(f"Token refresh finished: {success_count}/{len(results)} refreshed")
        return summary

    async def _refresh_account(self, client: httpx.AsyncClient, account: MailboxAccount) -> Dict[str, Any]:
        try:
            access_token, expires_at = await self._request_token(client, account)
            await self._accounts.update(
                account.id,
                {"access_token": access_token, "token_expires_at": expires_at.isoformat()},
            )
        except Exception as exc:
            logger.warning(f"Token refresh failed for {account.email}: {exc}")
            try:
                await self._accounts.update(
                    account.id,
                    {"is_active": False, "last_sync_error": f"Token refresh failed: {exc}"},
                )
            except Exception as update_exc:
                logger.error(f"Could not deactivate account {account.id}: {update_exc}")
            return {
                "account_id": account.id,
                "email": account.email,
                "status": "error",
                "error": str(exc),
            }

        logger.info(f"Refreshed token for {account.email}")
        return {
            "account_id": account.id,
            "email": account.email,
            "status": "success",
            "new_expiry": expires_at.isoformat(),
        }

    async def _request_token(self, client: httpx.AsyncClient, account: MailboxAccount) -> tuple[str, datetime]:
        try:
            response = await client.post(
                self._config.token_url,
                data={
                    "client_id": self._config.client_id,
                    "client_secret": self._config.client_secret,
                    "refresh_token": account.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise TokenRefreshError(f"Token endpoint returned {response.status_code}: {response.text[:200]}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenRefreshError("Token endpoint returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise TokenRefreshError("Token response missing access_token")

        expires_in = payload.get("expires_in") or self._config.default_expires_in
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
        return access_token, expires_at
