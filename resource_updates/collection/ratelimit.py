"""Shared per-service call spacing.

A single :class:`ServiceRateLimiter` is handed to every collector, analyzer
and screenshot client in a batch, so the minimum interval between calls to a
third-party service holds across all concurrently running jobs.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from resource_updates.pipeline.config import PipelinePoliteness


class ServiceRateLimiter:
    """Enforces a fixed minimum delay between calls to the same service.

    Usage:
        limiter = ServiceRateLimiter(politeness)
        limiter.wait("repository")
        response = requests.get(...)
    """

    def __init__(
        self,
        politeness: "PipelinePoliteness | None" = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if politeness is None:
            from resource_updates.pipeline.config import PipelinePoliteness

            politeness = PipelinePoliteness()
        self.politeness = politeness
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot: dict[str, float] = {}

    def get_cooldown(self, service: str) -> float:
        """Seconds until ``service`` may be called again (0 if no wait needed)."""
        with self._lock:
            slot = self._next_slot.get(service)
        if slot is None:
            return 0.0
        return max(slot - self._clock(), 0.0)

    def wait(self, service: str) -> float:
        """Block until ``service`` may be called; returns the seconds waited.

        The slot is reserved under the lock before sleeping, so concurrent
        callers queue up one interval apart instead of firing together.
        """
        interval = self.politeness.interval_for(service)
        with self._lock:
            now = self._clock()
            start = max(now, self._next_slot.get(service, now))
            self._next_slot[service] = start + interval
        delay = start - now
        if delay > 0:
            self._sleep(delay)
        return delay
