"""
Sliding-window request limiter keyed by credential identity.

Each identity (a token id or a source address) gets its own window of
recent request times and its own lock. Windows are pruned lazily on the
next call for that identity; sweep() drops idle identities entirely.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict, deque
from typing import Callable

from tollgate.config import Settings, get_settings
from tollgate.core.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self.clock = clock
        self._windows: dict[str, deque[float]] = defaultdict(deque)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def window_seconds(self) -> float:
        return float(max(1, self.settings.rate_limit_window_seconds))

    async def allow(self, identity: str, limit: int | None = None) -> None:
        """
        Count one request for `identity`.

        Raises RateLimitExceeded (with retry_after) when the identity has
        already used `limit` requests in the trailing window.
        """
        if limit is None:
            limit = self.settings.rate_limit_per_window
        if limit <= 0:
            raise RateLimitExceeded("Rate limit exceeded.", retry_after=self.window_seconds)

        async with self._locks[identity]:
            now = self.clock()
            window = self._windows[identity]
            self._prune(window, now)
            if len(window) >= limit:
                retry_after = max(0.0, window[0] + self.window_seconds - now)
                logger.info("Rate limit hit for %s (%d/%d)", _redact(identity), len(window), limit)
                raise RateLimitExceeded(
                    "Rate limit exceeded. Please try again later.",
                    retry_after=retry_after,
                )
            window.append(now)

    async def remaining(self, identity: str, limit: int | None = None) -> int:
        if limit is None:
            limit = self.settings.rate_limit_per_window
        window = self._windows.get(identity)
        if not window:
            return max(0, limit)
        async with self._locks[identity]:
            self._prune(window, self.clock())
            return max(0, limit - len(window))

    def reset(self, identity: str) -> None:
        self._windows.pop(identity, None)
        lock = self._locks.get(identity)
        if lock is not None and not lock.locked():
            del self._locks[identity]

    def sweep(self) -> int:
        """Forget identities whose windows are empty. Returns how many."""
        now = self.clock()
        idle = []
        for identity, window in list(self._windows.items()):
            lock = self._locks.get(identity)
            if lock is not None and lock.locked():
                continue
            self._prune(window, now)
            if not window:
                idle.append(identity)
        for identity in idle:
            self._windows.pop(identity, None)
            self._locks.pop(identity, None)
        # Locks left behind by identities that never got a window
        for identity, lock in list(self._locks.items()):
            if identity not in self._windows and not lock.locked():
                del self._locks[identity]
        return len(idle)

    def _prune(self, window: deque[float], now: float) -> None:
        # Window is (now - window_seconds, now]; retry_after lands on a free slot
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()


def _redact(identity: str) -> str:
    return identity if len(identity) <= 24 else identity[:24] + "..."
