"""
Sliding-window rate limiter.

Each identifier (``fetch:<domain>``, ``exec:<command>``) keeps the
timestamps of its admitted requests inside the window. A request is
admitted while fewer than ``max_requests`` timestamps remain; a denied
request is not recorded.

All state is guarded by one limiter-wide lock, so admissions for the same
identifier are serialized in call order.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from hostgate.periodic import PeriodicTask
from hostgate.schema import RateDecision

logger = logging.getLogger(__name__)

# Remaining-request count below which admissions are logged as warnings
LOW_REMAINING_WARNING = 10


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass
class _Window:
    window_ms: int
    timestamps: deque[int] = field(default_factory=deque)
    last_request_ms: int = 0

    def prune(self, now_ms: int) -> None:
        cutoff = now_ms - self.window_ms
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


class RateLimiter:
    """
    Per-identifier sliding-window limiter.

    Usage:
        limiter = RateLimiter()
        decision = limiter.admit("fetch:api.github.com", max_requests=100, window_ms=60_000)
        if not decision.allowed:
            wait(decision.retry_after_ms)

    Args:
        clock: Returns the current time in milliseconds (monotonic by default)
        sweep_interval: Seconds between background sweeps once started
    """

    def __init__(
        self,
        clock: Callable[[], int] | None = None,
        sweep_interval: float = 300.0,
    ) -> None:
        self._clock = clock or _monotonic_ms
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicTask("hostgate-ratelimit-sweep", sweep_interval, self.sweep)

    def admit(self, identifier: str, max_requests: int, window_ms: int) -> RateDecision:
        """
        Check and record a request for ``identifier``.

        Returns:
            RateDecision; denied decisions carry ``retry_after_ms``, the time
            until the oldest request in the window expires
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_ms < 1:
            raise ValueError("window_ms must be at least 1")

        with self._lock:
            now = self._clock()
            window = self._windows.get(identifier)
            if window is None:
                window = _Window(window_ms=window_ms)
                self._windows[identifier] = window
            window.window_ms = window_ms
            window.prune(now)

            if len(window.timestamps) >= max_requests:
                retry_after = max(0, window.timestamps[0] + window_ms - now)
                logger.warning(
                    "Rate limited: %s (%d/%d requests in window), retry after %dms",
                    identifier,
                    len(window.timestamps),
                    max_requests,
                    retry_after,
                )
                return RateDecision(allowed=False, remaining=0, retry_after_ms=retry_after)

            window.timestamps.append(now)
            window.last_request_ms = now
            remaining = max_requests - len(window.timestamps)

        if remaining < LOW_REMAINING_WARNING:
            logger.warning(
                "%s approaching rate limit (%d requests remaining)", identifier, remaining
            )
        return RateDecision(allowed=True, remaining=remaining)

    def status(self, identifier: str, max_requests: int, window_ms: int) -> RateDecision:
        """Peek at the state of ``identifier`` without recording a request."""
        with self._lock:
            now = self._clock()
            window = self._windows.get(identifier)
            if window is None:
                return RateDecision(allowed=True, remaining=max_requests)
            cutoff = now - window_ms
            live = [ts for ts in window.timestamps if ts > cutoff]

        if len(live) >= max_requests:
            return RateDecision(
                allowed=False,
                remaining=0,
                retry_after_ms=max(0, live[0] + window_ms - now),
            )
        return RateDecision(allowed=True, remaining=max_requests - len(live))

    def clear(self, identifier: str) -> None:
        """Forget all requests recorded for ``identifier``."""
        with self._lock:
            self._windows.pop(identifier, None)

    def clear_all(self) -> None:
        """Forget all recorded requests."""
        with self._lock:
            self._windows.clear()

    def sweep(self) -> int:
        """
        Purge identifiers whose window has been empty for more than twice
        the window length.

        Returns:
            Number of identifiers removed
        """
        with self._lock:
            now = self._clock()
            stale = []
            for identifier, window in self._windows.items():
                window.prune(now)
                idle_for = now - (window.last_request_ms + window.window_ms)
                if not window.timestamps and idle_for > 2 * window.window_ms:
                    stale.append(identifier)
            for identifier in stale:
                del self._windows[identifier]

        if stale:
            logger.debug("Rate limiter sweep removed %d identifiers", len(stale))
        return len(stale)

    def tracked(self) -> list[str]:
        """Identifiers currently holding state."""
        with self._lock:
            return sorted(self._windows)

    def start(self) -> None:
        """Start the background sweep."""
        self._sweeper.start()

    def shutdown(self) -> None:
        """Stop the background sweep."""
        self._sweeper.stop()
