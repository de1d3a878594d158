"""
Caller-owned cache for the organisation id.

The cache holds a single value. It expires after ttl_seconds and can be
invalidated explicitly. Concurrent loads are serialized by an asyncio.Lock
so one expiry triggers one fetch. The lock is created per event loop, so
one cache can serve several successive asyncio.run calls.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional


class OrgIdCache:
    """Single-slot TTL cache; ttl_seconds=None means the value never expires."""

    def __init__(
        self,
        ttl_seconds: Optional[float] = 3600,
        clock: Callable[[], float] = time.monotonic
    ):
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive or None")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Optional[str] = None
        self._stored_at: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def peek(self) -> Optional[str]:
        """Return the cached value if still fresh, without loading."""
        if self._value is None or self._stored_at is None:
            return None
        if self.ttl_seconds is not None and self._clock() - self._stored_at >= self.ttl_seconds:
            return None
        return self._value

    def set(self, value: str) -> None:
        self._value = value
        self._stored_at = self._clock()

    def invalidate(self) -> None:
        self._value = None
        self._stored_at = None

    def _loop_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def get(self, loader: Callable[[], Awaitable[str]]) -> str:
        """
        Return the cached value, calling loader() when empty or expired.

        Args:
            loader: Coroutine function producing a fresh value

        Returns:
            Organisation id
        """
        cached = self.peek()
        if cached is not None:
            return cached

        async with self._loop_lock():
            # Another task may have filled the slot while we waited
            cached = self.peek()
            if cached is not None:
                return cached
            value = await loader()
            self.set(value)
            return value
