"""
auth/ratelimit.py -- Per-key attempt counter for credential endpoints.

Semantics (per throttling key, usually "<bucket>:<client address>"):
  - No entry, or the entry's window has lapsed: start a new window with
    count = 1 and allow.
  - Inside the window and count < max_attempts: increment and allow.
  - Inside the window and count >= max_attempts: block. The count is not
    incremented, so blocked calls never push the counter past the cap.

Read-compare-increment for a key is one critical section under a lock:
concurrent requests from one address never get more than max_attempts through.

The limiter throttles attempts, not failures: it knows nothing about whether
the guarded call succeeded. Apply it before password verification.

Entries are lazily expired. purge_expired() is an optional compaction pass;
check() never depends on it.

slowapi supplies the client-address key function (see auth/dependencies.py).
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass

from core.clock import Clock, system_clock

logger = logging.getLogger("tenantauth.auth.ratelimit")


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    reset_at: float
    retry_after: int = 0


class RateLimiter:
    """In-process windowed attempt counter.

    Constructed once at startup and shared by every request handler. Keep one
    instance per process; counters are not shared across workers.
    """

    def __init__(self, clock: Clock = system_clock) -> None:
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def check(self, key: str, max_attempts: int, window_seconds: float) -> RateLimitDecision:
        """Count one attempt for key and return whether it is allowed."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None or entry.reset_at <= now:
                entry = RateLimitEntry(count=1, reset_at=now + window_seconds)
                self._entries[key] = entry
                return RateLimitDecision(allowed=True, count=1, reset_at=entry.reset_at)
            if entry.count >= max_attempts:
                retry_after = max(1, math.ceil(entry.reset_at - now))
                logger.warning("Rate limit exceeded for %s (retry in %ds)", key, retry_after)
                return RateLimitDecision(
                    allowed=False,
                    count=entry.count,
                    reset_at=entry.reset_at,
                    retry_after=retry_after,
                )
            entry.count += 1
            return RateLimitDecision(allowed=True, count=entry.count, reset_at=entry.reset_at)

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Drop entries whose window has lapsed. Returns the number removed."""
        with self._lock:
            now = self._clock()
            stale = [k for k, e in self._entries.items() if e.reset_at <= now]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
