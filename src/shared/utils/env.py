"""Environment variable loading utilities."""

from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def load_env(env_file: Optional[str] = None, override: bool = False) -> None:
    """Load environment variables from .env file.

    Args:
        env_file: Path to .env file. If None, searches for .env in current
                 directory and parent directories (outermost first, so the
                 closest file wins when ``override`` is set).
        override: Whether to override existing environment variables.
    """
    env_paths = []
    if env_file:
        env_path = Path(env_file)
        if env_path.exists():
            env_paths.append(env_path)
    else:
        current = Path.cwd()
        for parent in reversed(list(current.parents)):
            candidate = parent / ".env"
            if candidate.exists():
                env_paths.append(candidate)
        candidate = current / ".env"
        if candidate.exists():
            env_paths.append(candidate)

    if not env_paths:
        logger.debug("No .env file found, using system environment")
        return

    for path in dict.fromkeys(env_paths):
        load_dotenv(path, override=override)
        logger.debug(f"Loaded environment from {path}")


def get_required_env(key: str) -> str:
    """Get required environment variable or raise error.

    Raises:
        ValueError: If environment variable is not set
    """
    value = os.getenv(key)
    if not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def get_env(key: str, default: Optional[str] = None) -> Optional[str]:
    """Get environment variable with optional default."""
    return os.getenv(key, default)
