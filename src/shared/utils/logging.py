"""Process-wide logging for the analysis job engine.

Cloud Function handlers and the CLI call ``setup_logging`` once at start-up.
Engine modules never configure logging themselves; they only ask for a
named logger. Every record goes to stdout, where the function runtime
collects it.
"""

from __future__ import annotations
import logging
import os
import sys
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# HTTP and PostgREST clients log every request at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "hpack", "supabase", "postgrest")


def setup_logging(level: Optional[str] = None, format_string: Optional[str] = None) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        level: Level name; falls back to ``LOG_LEVEL`` and then ``INFO``.
            Unknown names resolve to ``INFO``.
        format_string: Record format; defaults to ``DEFAULT_FORMAT``.
    """
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(level_name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    # Warm function instances call this again on re-import
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(resolved)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Named logger, optionally pinned to its own level."""
    logger = logging.getLogger(name)
    if level:
        override = logging.getLevelName(level.upper())
        if isinstance(override, int):
            logger.setLevel(override)
    return logger
