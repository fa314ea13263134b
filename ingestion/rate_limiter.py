"""
Shared request pacing for the FDC provider.

The provider throttles on aggregate requests per hour, so every request,
from whichever task, goes through one RateLimiter and waits its turn.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Optional

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RateLimitState:
    """Ephemeral pacing state; never persisted"""
    delay_seconds: float
    attempt: int = 0
    retry_after: Optional[int] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None


def _header_int(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class RateLimiter:
    """
    Fixed-interval limiter guarded by an asyncio.Lock.

    acquire() sleeps the configured interval while holding the lock, so
    concurrent callers are serialized and share one budget.
    """

    def __init__(self, delay_seconds: float, sleep: Sleep = asyncio.sleep):
        if delay_seconds < 0:
            raise ValueError("delay_seconds must not be negative")
        self.state = RateLimitState(delay_seconds=delay_seconds)
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._extra_interval = False

    async def acquire(self) -> None:
        async with self._lock:
            delay = self.state.delay_seconds
            if self._extra_interval:
                delay += self.state.delay_seconds
                self._extra_interval = False
            if delay > 0:
                await self._sleep(delay)

    def observe(self, headers: Mapping[str, str]) -> None:
        """Record the provider's rate-limit headers from a response"""
        limit = _header_int(headers, "x-ratelimit-limit")
        remaining = _header_int(headers, "x-ratelimit-remaining")
        if limit is not None:
            self.state.limit = limit
        if remaining is None:
            return

        self.state.remaining = remaining
        logger.debug(f"Rate limit remaining: {remaining}/{self.state.limit}")
        if remaining <= 0:
            logger.warning("Rate limit budget exhausted, slowing down for one interval")
            self._extra_interval = True

    def start_request(self) -> None:
        self.state.attempt = 0
        self.state.retry_after = None

    def record_attempt(self) -> None:
        self.state.attempt += 1
