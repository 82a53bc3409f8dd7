"""
Database operations for message analysis.
"""

from .account_store import AccountStore
from .analysis_writer import AnalysisWriter
from .message_store import DEFAULT_SELECTION, MessageStore

__all__ = ["AccountStore", "AnalysisWriter", "DEFAULT_SELECTION", "MessageStore"]
