from __future__ import annotations

"""Sliding-window request quota for the chat entry point."""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from fastapi import Request

logger = logging.getLogger(__name__)


@dataclass
class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per identifier within ``window_seconds``."""
    max_requests: int = 10
    window_seconds: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _buckets: dict[str, deque[float]] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def allow(self, identifier: str) -> bool:
        """Record a request and return False when the quota is exhausted."""
        now = self.clock()
        cutoff = now - self.window_seconds
        with self._lock:
            bucket = self._buckets.setdefault(identifier, deque())
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            if len(bucket) >= self.max_requests:
                logger.warning(
                    "rate_limit_exceeded",
                    extra={"identifier": identifier, "limit": self.max_requests},
                )
                return False
            bucket.append(now)
            if len(self._buckets) > 10_000:
                self._cleanup(cutoff)
            return True

    def retry_after(self, identifier: str) -> int:
        """Seconds until the oldest request in the window expires."""
        with self._lock:
            bucket = self._buckets.get(identifier)
            if not bucket:
                return 0
            remaining = bucket[0] + self.window_seconds - self.clock()
        return max(1, int(remaining + 0.999))

    def remaining(self, identifier: str) -> int:
        """Requests still allowed for ``identifier`` in the current window."""
        cutoff = self.clock() - self.window_seconds
        with self._lock:
            bucket = self._buckets.get(identifier)
            used = sum(1 for stamp in bucket if stamp > cutoff) if bucket else 0
        return max(0, self.max_requests - used)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()

    def _cleanup(self, cutoff: float) -> None:
        stale = [key for key, bucket in self._buckets.items() if not bucket or bucket[-1] <= cutoff]
        for key in stale:
            del self._buckets[key]


def client_identifier(request: Request) -> str:
    """Identify the caller by the first forwarded hop or the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client is not None:
        return request.client.host
    return "unknown"
