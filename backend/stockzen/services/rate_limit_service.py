"""
Sync Rate Limiting Service

WHY: A misbehaving client (or a device stuck in a retry loop) must not be
able to hammer the sync endpoint. Requests are throttled per (user, IP).

DESIGN:
- Sliding window: each key keeps the timestamps of its recent hits; a hit
  is allowed while fewer than `limit` remain inside the window.
- The limiter is an explicit object, created in create_app (or injected by
  tests) and stored on app.extensions. State lives for the process
  lifetime; reset() clears it deterministically.
- Keys whose hits have all expired are swept from inside hit() at most
  once per window, so one-off clients do not accumulate.
- The clock is injectable so tests can move time without sleeping.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass

from flask import current_app


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float

    def retry_after_seconds(self, now: float) -> int:
        return max(1, int(round(self.reset_at - now)))


class SlidingWindowRateLimiter:
    def __init__(self, limit: int = 30, window_seconds: float = 60.0, clock=time.monotonic):
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self._hits: dict[str, deque] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def hit(self, key: str) -> RateLimitResult:
        now = self.clock()
        cutoff = now - self.window_seconds
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.limit:
                return RateLimitResult(False, 0, hits[0] + self.window_seconds)

            hits.append(now)
            return RateLimitResult(True, self.limit - len(hits), hits[0] + self.window_seconds)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    def prune(self) -> None:
        """Drop keys whose hits have all expired."""
        cutoff = self.clock() - self.window_seconds
        with self._lock:
            self._sweep(cutoff)

    def _sweep(self, cutoff: float) -> None:
        # caller holds the lock
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]


def get_client_ip(headers, remote_addr: str | None) -> str:
    """
    Best-effort client IP for throttling keys.

    Order: first X-Forwarded-For entry, X-Real-IP, CF-Connecting-IP,
    then the socket address.
    """
    forwarded = headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("X-Real-IP", "CF-Connecting-IP"):
        value = headers.get(header)
        if value and value.strip():
            return value.strip()
    return remote_addr or "unknown"


def sync_rate_limit_key(user_id: str, client_ip: str) -> str:
    return f"sync:{user_id}:{client_ip}"


def get_sync_rate_limiter() -> SlidingWindowRateLimiter:
    return current_app.extensions["stockzen.sync_rate_limiter"]
