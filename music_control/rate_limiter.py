"""Per-address limit on WebSocket connection attempts.

A sliding window of attempt timestamps is kept for every client address.
Refused attempts are not recorded, so a client that backs off recovers as
soon as its oldest accepted attempt leaves the window.
"""

from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque, Dict


class InMemoryRateLimiter:
    """Sliding-window attempt counter keyed by client address.

    Parameters
    ----------
    max_requests:
        Attempts allowed per address within *window_seconds*.
    window_seconds:
        Length of the sliding window in seconds.
    clock:
        Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: Dict[str, Deque[float]] = {}

    def _expire(self, attempts: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while attempts and attempts[0] <= cutoff:
            attempts.popleft()

    def check(self, address: str) -> bool:
        """Record an attempt from *address*; ``False`` if it is over the limit."""
        now = self._clock()
        attempts = self._attempts.setdefault(address, deque())
        self._expire(attempts, now)
        if len(attempts) >= self.max_requests:
            return False
        attempts.append(now)
        return True

    def remaining(self, address: str) -> int:
        attempts = self._attempts.get(address)
        if not attempts:
            return self.max_requests
        self._expire(attempts, self._clock())
        return max(0, self.max_requests - len(attempts))

    def prune(self) -> int:
        """Forget addresses with no attempts in the window. Returns how many were dropped."""
        now = self._clock()
        idle = []
        for address, attempts in self._attempts.items():
            self._expire(attempts, now)
            if not attempts:
                idle.append(address)
        for address in idle:
            del self._attempts[address]
        return len(idle)

    def __len__(self) -> int:
        return len(self._attempts)

    def reset(self) -> None:
        self._attempts.clear()
