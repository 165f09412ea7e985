"""Per-caller sliding-window rate limiter.

Each identifier (``X-Client-ID`` header or peer address) owns a deque of
the timestamps it was admitted at.  A check first drops timestamps that
left the trailing window and only then compares against the ceiling, so
expired requests never count against the budget.

The identifier key space is unbounded, so identifiers whose window has
emptied are reclaimed both by the periodic :meth:`SlidingWindowRateLimiter.sweep`
and, probabilistically, on roughly one check in ten.
"""

from __future__ import annotations

import logging
import math
import random
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from vetcare_mcp import config

logger = logging.getLogger(__name__)

SWEEP_PROBABILITY = 0.1


class SlidingWindowRateLimiter:
    """Admit at most ``max_requests`` per identifier in any ``window_seconds``."""

    def __init__(
        self,
        max_requests: int = config.RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = config.RATE_LIMIT_WINDOW_SECONDS,
        *,
        enabled: bool = config.RATE_LIMIT_ENABLED,
        clock: Callable[[], float] = time.monotonic,
        sweep_probability: float = SWEEP_PROBABILITY,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.enabled = enabled
        self._clock = clock
        self._sweep_probability = sweep_probability
        self._windows: dict[str, deque[float]] = {}
        self._rejected = 0

    def _prune(self, window: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

    def check_limit(self, identifier: str) -> bool:
        """Admit (and record) the call, or return ``False`` when over the ceiling."""
        if not self.enabled:
            return True

        now = self._clock()
        window = self._windows.setdefault(identifier, deque())
        self._prune(window, now)

        if len(window) >= self.max_requests:
            self._rejected += 1
            logger.warning(
                "Rate limit hit for %s (%d in %.0fs)",
                identifier, len(window), self.window_seconds,
            )
            return False

        window.append(now)

        if random.random() < self._sweep_probability:
            self.sweep()
        return True

    def get_remaining_time(self, identifier: str) -> int:
        """Seconds until the oldest retained timestamp leaves the window."""
        window = self._windows.get(identifier)
        if not window:
            return 0
        now = self._clock()
        self._prune(window, now)
        if not window:
            return 0
        remaining = window[0] + self.window_seconds - now
        return max(0, math.ceil(remaining))

    def sweep(self) -> int:
        """Prune every window and drop identifiers left empty.  Returns count dropped."""
        now = self._clock()
        empty = []
        for identifier, window in self._windows.items():
            self._prune(window, now)
            if not window:
                empty.append(identifier)
        for identifier in empty:
            del self._windows[identifier]
        return len(empty)

    @property
    def tracked_identifiers(self) -> int:
        return len(self._windows)

    def stats(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "tracked_identifiers": len(self._windows),
            "rejected": self._rejected,
        }
