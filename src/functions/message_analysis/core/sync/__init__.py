"""Credential refresh and mailbox sync stages."""

from .gmail_client import GmailClient, GmailMessage, SourceSyncError
from .mailbox_sync import MailboxSync
from .tenant import DEFAULT_TENANT, classify_tenant
from .token_refresh import TokenRefreshError, TokenRefresher

__all__ = [
    "DEFAULT_TENANT",
    "GmailClient",
    "GmailMessage",
    "MailboxSync",
    "SourceSyncError",
    "TokenRefreshError",
    "TokenRefresher",
    "classify_tenant",
]
