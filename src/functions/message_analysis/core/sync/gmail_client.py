"""Minimal async client for the Gmail REST API (list + get messages)."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Mapping, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

LIST_QUOTA_UNITS = 1
GET_QUOTA_UNITS = 5


class SourceSyncError(RuntimeError):
    """Raised when the mail source rejects a request for one account."""


class _RetryableResponse(RuntimeError):
    """Internal marker for 429/5xx answers worth another attempt."""


@dataclass
class GmailMessage:
    """A fetched message reduced to the fields the item store keeps."""

    external_id: str
    thread_id: Optional[str] = None
    subject: str = ""
    from_address: str = ""
    to_address: str = ""
    date_header: str = ""
    body: str = ""
    label_ids: List[str] = field(default_factory=list)

    @property
    def headers(self) -> Dict[str, str]:
        return {"from": self.from_address, "to": self.to_address, "subject": self.subject}

    @property
    def received_at(self) -> datetime:
        if self.date_header:
            try:
                parsed = parsedate_to_datetime(self.date_header)
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed
            except (TypeError, ValueError):
                logger.debug(f"Unparseable Date header on {self.external_id}: {self.date_header!r}")
        return datetime.now(timezone.utc)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "GmailMessage":
        message_payload = payload.get("payload") or {}
        headers = {
            str(entry.get("name", "")).lower(): str(entry.get("value", ""))
            for entry in message_payload.get("headers") or []
        }
        body = _extract_body(message_payload) or payload.get("snippet") or ""
        return cls(
            external_id=str(payload["id"]),
            thread_id=payload.get("threadId"),
            subject=headers.get("subject", ""),
            from_address=headers.get("from", ""),
            to_address=headers.get("to", ""),
            date_header=headers.get("date", ""),
            body=body,
            label_ids=list(payload.get("labelIds") or []),
        )


def _decode_base64url(data: str) -> Optional[str]:
    try:
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return None


def _extract_body(message_payload: Mapping[str, Any]) -> str:
    data = (message_payload.get("body") or {}).get("data")
    if data:
        decoded = _decode_base64url(data)
        if decoded:
            return decoded
    for part in message_payload.get("parts") or []:
        if part.get("mimeType") == "text/plain":
            decoded = _extract_body(part)
            if decoded:
                return decoded
    for part in message_payload.get("parts") or []:
        if part.get("parts"):
            decoded = _extract_body(part)
            if decoded:
                return decoded
    return ""


def build_query(since: Optional[datetime]) -> str:
    """Inbox query, narrowed to messages after ``since`` (day resolution)."""
    query = "in:inbox"
    if since is not None:
        query += f" after:{since.strftime('%Y/%m/%d')}"
    return query


class GmailClient:
    """Lists and fetches inbox messages with one access token.

    Transport failures, 429 and 5xx answers are retried with exponential
    backoff; any other error status raises ``SourceSyncError`` at once.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        *,
        base_url: str = "https://gmail.googleapis.com/gmail/v1/users/me",
        max_attempts: int = 3,
        retry_wait=None,
    ) -> None:
        self._http = http_client
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._max_attempts = max_attempts
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=8)
        self.quota_used = 0

    async def list_message_ids(self, query: str, max_results: int) -> List[str]:
        payload = await self._get_json(
            f"{self._base_url}/messages",
            params={"maxResults": max_results, "q": query},
        )
        self.quota_used += LIST_QUOTA_UNITS
        return [str(entry["id"]) for entry in payload.get("messages") or [] if entry.get("id")]

    async def get_message(self, message_id: str) -> GmailMessage:
        payload = await self._get_json(f"{self._base_url}/messages/{message_id}")
        self.quota_used += GET_QUOTA_UNITS
        return GmailMessage.from_api(payload)

    async def fetch_messages(self, since: Optional[datetime], max_results: int) -> List[GmailMessage]:
        """List matching messages and fetch each one; unreadable messages are skipped."""
        ids = await self.list_message_ids(build_query(since), max_results)
        messages: List[GmailMessage] = []
        for message_id in ids:
            try:
                messages.append(await self.get_message(message_id))
            except SourceSyncError as exc:
                logger.warning(f"Skipping message {message_id}: {exc}")
        return messages

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type((httpx.TransportError, _RetryableResponse)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._get_once(url, params)
        except (httpx.TransportError, _RetryableResponse) as exc:
            raise SourceSyncError(f"Gmail request failed after {self._max_attempts} attempts: {exc}") from exc
        raise SourceSyncError("Gmail request failed without a response")

    async def _get_once(self, url: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        response = await self._http.get(
            url,
            params=params,
            headers={"Authorization": f"Bearer {self._access_token}"},
        )
        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableResponse(f"Gmail returned {response.status_code}")
        if response.status_code >= 400:
            raise SourceSyncError(f"Gmail returned {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as exc:
            raise SourceSyncError("Gmail returned invalid JSON") from exc
