"""
Rolling-window event counters for the ``/stats`` endpoint.

Each metric keeps an append-only deque of event timestamps. Counting walks the
deque from the right, and ``prune()`` drops events older than the retention
window from the left, so memory stays bounded by the busiest
``retention_seconds`` of traffic.

One ``RollingCounters`` instance is built with the service and passed to every
collaborator that records events (client, store, HTTP layer). It is pure
observability state: nothing reads it to make a decision.
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from collections.abc import Callable
from typing import Optional

API_CALLS = "api_calls"
GUILDS_ADDED = "guilds_added"
GUILD_READS = "guild_reads"
CACHE_WRITES = "cache_writes"


class RollingCounters:
    """Timestamped event log per metric, counted over trailing windows.

    Args:
        retention_seconds: Events older than this are discarded by ``prune()``.
            Must cover the widest window passed to ``count()``.
        clock: Returns the current time in seconds (``time.time`` by default).
    """

    def __init__(
        self,
        retention_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._totals: dict[str, int] = defaultdict(int)

    def record(self, metric: str, at: Optional[float] = None) -> None:
        """Append one event for ``metric`` at ``at`` (default: now)."""
        ts = self._clock() if at is None else at
        self._events[metric].append(ts)
        self._totals[metric] += 1
        self.prune(metric, now=ts)

    def count(
        self, metric: str, window_seconds: float, now: Optional[float] = None
    ) -> int:
        """Return how many ``metric`` events fall in the trailing window.

        An event exactly ``window_seconds`` old is outside the window.
        """
        now = self._clock() if now is None else now
        cutoff = now - window_seconds
        events = self._events.get(metric)
        if not events:
            return 0
        n = 0
        for ts in reversed(events):
            if ts <= cutoff:
                break
            if ts <= now:
                n += 1
        return n

    def total(self, metric: str) -> int:
        """Return the all-time number of ``metric`` events since start-up."""
        return self._totals.get(metric, 0)

    def prune(self, metric: Optional[str] = None, now: Optional[float] = None) -> int:
        """Drop events older than the retention window.

        Args:
            metric: Prune only this metric; all metrics when ``None``.
            now: Reference time (default: now).

        Returns:
            Number of events removed.
        """
        now = self._clock() if now is None else now
        cutoff = now - self.retention_seconds
        names = [metric] if metric is not None else list(self._events)
        removed = 0
        for name in names:
            events = self._events.get(name)
            while events and events[0] < cutoff:
                events.popleft()
                removed += 1
        return removed

    def snapshot(self, windows: dict[str, tuple[str, float]]) -> dict[str, int]:
        """Count several metrics at once.

        Args:
            windows: Output key → ``(metric, window_seconds)``.

        Returns:
            Output key → count, all measured against the same ``now``.
        """
        now = self._clock()
        self.prune(now=now)
        return {
            key: self.count(metric, window, now=now)
            for key, (metric, window) in windows.items()
        }
