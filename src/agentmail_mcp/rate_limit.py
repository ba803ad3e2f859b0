"""
Per-client request rate limiting.

Fixed window per client key: the first request after the window expires
opens a new window. Across a window boundary a client can get up to
twice the maximum through.

Entries are never evicted, so memory grows with the number of distinct
client addresses seen over the process lifetime.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class RateLimitEntry:
    """Request count for one client in the current window."""
    requests: int
    reset_time: float


class RateLimiter:
    """
    Fixed-window request counter keyed by client address.

    Example:
        limiter = RateLimiter(window=60, max_requests=100)
        if not limiter.check(client_ip):
            ...  # respond 429
    """

    def __init__(
        self,
        window: float = 60,
        max_requests: int = 100,
        clock: Callable[[], float] = time.monotonic
    ):
        self.window = window
        self.max_requests = max_requests
        self.clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def check(self, client_key: str) -> bool:
        """
        Record a request and decide whether it may proceed.

        Returns:
            True if allowed, False if the client is over its limit
        """
        now = self.clock()
        entry = self._entries.get(client_key)

        if entry is None or now > entry.reset_time:
            self._entries[client_key] = RateLimitEntry(requests=1, reset_time=now + self.window)
            return True

        if entry.requests >= self.max_requests:
            return False

        entry.requests += 1
        return True

    def retry_after(self, client_key: str) -> int:
        """Whole seconds until the client's current window resets (at least 1)."""
        entry = self._entries.get(client_key)
        if entry is None:
            return 1
        return max(1, math.ceil(entry.reset_time - self.clock()))

    def get(self, client_key: str) -> Optional[RateLimitEntry]:
        return self._entries.get(client_key)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
