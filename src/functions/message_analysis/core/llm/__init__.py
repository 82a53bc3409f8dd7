"""Analyzer client and rate limiting for the message analysis module."""

from .gemini_client import (
    AnalyzerError,
    ExternalServiceError,
    GeminiAnalyzerClient,
    MalformedResponseError,
)
from .rate_limiter import RateLimiter, RateLimitExceeded

__all__ = [
    "AnalyzerError",
    "ExternalServiceError",
    "GeminiAnalyzerClient",
    "MalformedResponseError",
    "RateLimiter",
    "RateLimitExceeded",
]
