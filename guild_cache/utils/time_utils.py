"""
Time helpers for TTL and staleness decisions.

Every persisted timestamp is an integer count of epoch seconds. A value of
``0`` (or ``NULL``) means "never scanned" and is always stale.
"""

from __future__ import annotations

import time
from typing import Optional

# Anything above this is an epoch-milliseconds value written by older builds
# (epoch seconds will not reach 1e11 until the year 5138).
MILLIS_THRESHOLD = 100_000_000_000


def epoch_seconds() -> int:
    """Return the current wall-clock time as integer epoch seconds."""
    return int(time.time())


def coerce_epoch_seconds(value: Optional[int | float]) -> Optional[int]:
    """Normalise a stored timestamp to epoch seconds.

    ``None`` passes through. Millisecond values (legacy ``level_last_updated``
    rows) are divided down.
    """
    if value is None:
        return None
    value = int(value)
    if value > MILLIS_THRESHOLD:
        return value // 1000
    return value


def is_stale(last_scan: Optional[int | float], ttl_seconds: int, now: int) -> bool:
    """Return ``True`` if a record last refreshed at ``last_scan`` needs a re-fetch.

    A missing or zero timestamp is always stale. Otherwise the record is stale
    once strictly more than ``ttl_seconds`` have elapsed.

    Args:
        last_scan: Stored timestamp (epoch seconds, ms tolerated) or ``None``.
        ttl_seconds: Maximum acceptable age.
        now: Reference time in epoch seconds.
    """
    last = coerce_epoch_seconds(last_scan)
    if not last:
        return True
    return now - last > ttl_seconds
