"""Sliding-window request counter shared by all market data providers."""

import logging
import time
from typing import Callable, Dict, Iterable, List

from ..models import ProviderSpec

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    Per-provider sliding window limiter.

    Keeps, per provider key, the timestamps of requests made within the
    window. Every call prunes entries older than ``now - window_ms`` before
    deciding. State lives only in memory; a restart resets all budgets, and
    the upstream vendors enforce their own hard limits on top of this.

    Calls are synchronous and never suspend, so on a single event loop no
    locking is needed.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            clock: Returns the current time in seconds (injectable for tests)
        """
        self._clock = clock
        self._requests: Dict[str, List[float]] = {}

    def _prune(self, provider_key: str, window_ms: int) -> List[float]:
        now_ms = self._clock() * 1000.0
        window_start = now_ms - window_ms
        timestamps = [t for t in self._requests.get(provider_key, []) if t > window_start]
        self._requests[provider_key] = timestamps
        return timestamps

    def can_make_request(self, provider_key: str, max_requests: int, window_ms: int) -> bool:
        """
        Check the budget and record the request when allowed.

        Returns:
            True if the request may proceed (and was counted), False otherwise
        """
        timestamps = self._prune(provider_key, window_ms)
        if len(timestamps) < max_requests:
            timestamps.append(self._clock() * 1000.0)
            return True

        logger.debug(
            "Rate limit reached for %s: %d requests in %d ms",
            provider_key,
            len(timestamps),
            window_ms,
        )
        return False

    def remaining(self, provider_key: str, max_requests: int, window_ms: int) -> int:
        """Requests still allowed in the current window (does not consume)."""
        timestamps = self._prune(provider_key, window_ms)
        return max(0, max_requests - len(timestamps))

    def allow(self, spec: ProviderSpec) -> bool:
        return self.can_make_request(spec.name, spec.max_requests, spec.window_ms)

    def usage(self, specs: Iterable[ProviderSpec]) -> Dict[str, dict]:
        """Snapshot of remaining budget per provider."""
        return {
            spec.name: {
                "active": spec.active,
                "priority": spec.priority,
                "maxRequests": spec.max_requests,
                "windowMs": spec.window_ms,
                "remaining": self.remaining(spec.name, spec.max_requests, spec.window_ms),
            }
            for spec in specs
        }

    def reset(self) -> None:
        self._requests.clear()
