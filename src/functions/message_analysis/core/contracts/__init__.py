"""Data contracts for messages, mailbox accounts and analysis results."""

from .account import MailboxAccount
from .analysis import ExtractedEntity, MessageAnalysis
from .message import AnalysisStatus, MessageItem

__all__ = [
    "AnalysisStatus",
    "ExtractedEntity",
    "MailboxAccount",
    "MessageAnalysis",
    "MessageItem",
]
