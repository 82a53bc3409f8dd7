"""Downstream aggregation: refresh per-customer profiles after analysis."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from src.shared.db import SupabaseConfig

from ..config import PipelineSettings

logger = logging.getLogger(__name__)


class ProfileUpdateError(RuntimeError):
    """Raised when the profile function rejects one customer."""


class ProfileUpdater:
    """Invokes the profile Edge Function once per recently analyzed customer."""

    def __init__(
        self,
        settings: PipelineSettings,
        supabase: SupabaseConfig,
        store,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings
        self._supabase = supabase
        self._store = store
        self._http = http_client

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self._supabase.url.rstrip('/')}/functions/v1",
            headers={
                "apikey": self._supabase.key,
                "Authorization": f"Bearer {self._supabase.key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(self._settings.function_timeout_seconds, connect=5.0),
        )

    async def run(self) -> Dict[str, Any]:
        """Update every customer with a message analyzed inside the lookback window.

        A failing customer is logged and counted; the rest still run.
        """
        since = datetime.now(timezone.utc) - timedelta(hours=self._settings.profile_lookback_hours)
        customer_ids = await self._store.recent_completed_customer_ids(since)

        failures: List[Dict[str, str]] = []
        owns_client = self._http is None
        client = self._http or self._build_client()
        try:
            for customer_id in customer_ids:
                try:
                    await self.update_customer(client, customer_id)
                except Exception as exc:
                    logger.error(f"Failed to update profile for customer {customer_id}: {exc}")
                    failures.append({"customer_id": customer_id, "error": str(exc)})
        finally:
            if owns_client:
                await client.aclose()

        updated = len(customer_ids) - len(failures)
        logger.info(f"Profile updates: {updated}/{len(customer_ids)} succeeded")
        return {
            "customers": len(customer_ids),
            "updated": updated,
            "failed": len(failures),
            "failures": failures,
        }

    async def update_customer(self, client: httpx.AsyncClient, customer_id: str) -> Dict[str, Any]:
        try:
            response = await client.post(
                f"/{self._settings.profile_function}",
                json={"customerId": customer_id},
            )
        except httpx.HTTPError as exc:
            raise ProfileUpdateError(f"Profile function unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise ProfileUpdateError(
                f"Profile function returned {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError:
            return {}
