"""
In-process sliding-window rate limiter.

Each (identifier, bucket) pair keeps a deque of admission instants. On every
request the entries older than the bucket window are dropped; the request is
admitted (and its instant appended) only while fewer than max_requests remain.
sweep() drops pairs whose window holds no hits, so the map does not keep
one entry per address ever seen; the maintenance pass calls it.

The limiter is constructed once at startup and attached to app.state; it is
not shared across processes.
"""

import threading
import time
from collections import deque
from collections.abc import Callable

from mowesport.config import RateLimitRule
from mowesport.exceptions import RateLimitExceededError


class RateLimiter:

    def __init__(
        self,
        rules: dict[str, RateLimitRule],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rules = dict(rules)
        self._clock = clock
        self._hits: dict[tuple[str, str], deque[float]] = {}
        self._lock = threading.Lock()

    def check(self, identifier: str, bucket: str) -> None:
        """
        Admit one request or raise.

        Unknown buckets and disabled rules always admit.

        Raises:
            RateLimitExceededError: the pair is at its ceiling for the window.
        """
        rule = self.rules.get(bucket)
        if rule is None or not rule.enabled:
            return

        window = rule.window.total_seconds()
        with self._lock:
            now = self._clock()
            hits = self._hits.setdefault((identifier, bucket), deque())
            while hits and hits[0] <= now - window:
                hits.popleft()
            if len(hits) >= rule.max_requests:
                retry_after = hits[0] + window - now
                raise RateLimitExceededError(bucket, retry_after=retry_after)
            hits.append(now)

    def remaining(self, identifier: str, bucket: str) -> int | None:
        rule = self.rules.get(bucket)
        if rule is None or not rule.enabled:
            return None
        window = rule.window.total_seconds()
        with self._lock:
            now = self._clock()
            hits = self._hits.get((identifier, bucket), ())
            live = sum(1 for t in hits if t > now - window)
        return max(0, rule.max_requests - live)

    def sweep(self) -> int:
        """Forget pairs with no hit inside their window; returns how many were dropped."""
        with self._lock:
            now = self._clock()
            idle = []
            for key, hits in self._hits.items():
                rule = self.rules.get(key[1])
                window = rule.window.total_seconds() if rule is not None else 0.0
                while hits and hits[0] <= now - window:
                    hits.popleft()
                if not hits:
                    idle.append(key)
            for key in idle:
                del self._hits[key]
        return len(idle)

    def __len__(self) -> int:
        return len(self._hits)

    def reset(self, identifier: str | None = None) -> None:
        with self._lock:
            if identifier is None:
                self._hits.clear()
            else:
                for key in [k for k in self._hits if k[0] == identifier]:
                    del self._hits[key]
