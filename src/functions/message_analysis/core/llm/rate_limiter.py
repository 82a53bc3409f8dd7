"""Async token bucket guarding calls to the analyzer service."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

from src.shared.utils.logging import get_logger

LOGGER = get_logger(__name__)


class RateLimitExceeded(RuntimeError):
    """Raised when no token becomes available before the timeout."""


@dataclass
class RateLimiter:
    """Token bucket refilled continuously at ``max_requests_per_minute``.

    Chunk pacing in the dispatcher bounds the burst; this bucket bounds the
    sustained rate across chunks and across concurrent batch runs sharing a
    client.
    """

    max_requests_per_minute: int = 60
    max_backoff_seconds: float = 10.0
    min_sleep_seconds: float = 0.05
    _capacity: float = field(init=False, repr=False)
    _tokens: float = field(init=False, repr=False)
    _refill_rate: float = field(init=False, repr=False)
    _lock: asyncio.Lock = field(init=False, repr=False)
    _last_refill: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_requests_per_minute <= 0:
            raise ValueError("max_requests_per_minute must be positive")
        if self.min_sleep_seconds <= 0:
            raise ValueError("min_sleep_seconds must be positive")
        if self.max_backoff_seconds < self.min_sleep_seconds:
            raise ValueError("max_backoff_seconds must be >= min_sleep_seconds")

        self._capacity = float(self.max_requests_per_minute)
        self._tokens = self._capacity
        self._refill_rate = self._capacity / 60.0
        self._lock = asyncio.Lock()
        self._last_refill = time.monotonic()

    async def acquire(self, timeout: Optional[float] = None) -> None:
        """Take one token, sleeping until the bucket refills.

        Raises:
            RateLimitExceeded: If ``timeout`` elapses first.
        """

        deadline = time.monotonic() + timeout if timeout is not None else None

        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait_time = (1.0 - self._tokens) / self._refill_rate

            delay = min(max(self.min_sleep_seconds, wait_time), self.max_backoff_seconds)
            if deadline is not None and time.monotonic() + delay > deadline:
                raise RateLimitExceeded("Timed out waiting for analyzer rate limit token")

            LOGGER.debug("Analyzer rate limiter waiting %.2fs", delay)
            await asyncio.sleep(delay)

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)
        self._last_refill = now
