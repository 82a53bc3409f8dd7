"""Shared utility functions."""

from .env import get_env, get_required_env, load_env
from .logging import get_logger, setup_logging

__all__ = ["setup_logging", "get_logger", "load_env", "get_env", "get_required_env"]
