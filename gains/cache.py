"""TTL cache used for FMP quotes and news headlines."""

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class InMemoryCache:
    """Simple in-memory cache with TTL support."""

    def __init__(self, default_ttl: int = 600, clock: Callable[[], float] = time.time):
        self._cache: Dict[str, Tuple[Any, float]] = {}
        self.default_ttl = default_ttl
        self._clock = clock

    def get(self, key: str, ttl_seconds: Optional[int] = None) -> Optional[Any]:
        """Get cached value if it exists and is not expired."""
        if key not in self._cache:
            return None

        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        value, timestamp = self._cache[key]
        if self._clock() - timestamp > ttl:
            del self._cache[key]
            logger.debug("Cache miss (expired): %s", key)
            return None

        logger.debug("Cache hit: %s", key)
        return value

    def set(self, key: str, value: Any) -> None:
        """Store value in cache with current timestamp."""
        self._cache[key] = (value, self._clock())
        logger.debug("Cache set: %s", key)

