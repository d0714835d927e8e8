"""
core/clock.py -- Injectable wall-clock source.

Every component that stamps or compares expiry times takes a Clock instead of
calling time.time() directly, so tests can freeze and advance time.
"""

import time
from datetime import datetime, timezone
from typing import Callable

# Returns the current time as epoch seconds.
Clock = Callable[[], float]


def system_clock() -> float:
    return time.time()


def to_iso(ts: float | None) -> str | None:
    """Render an epoch timestamp as an ISO 8601 UTC string (None passes through)."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()
