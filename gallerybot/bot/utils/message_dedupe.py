"""In-memory dedupe cache for redelivered WhatsApp message ids."""

from __future__ import annotations

import time
from collections import OrderedDict


class MessageDedupeCache:
    """Track recently handled message keys with TTL and size bound."""

    def __init__(self, *, ttl_seconds: int = 300, max_size: int = 5000) -> None:
        self.ttl_seconds = max(1, int(ttl_seconds))
        self.max_size = max(1, int(max_size))
        self._seen: OrderedDict[str, float] = OrderedDict()

    def check_and_mark(self, key: str) -> bool:
        """Return True if key already seen, otherwise store and return False."""
        now = time.monotonic()
        self._evict_expired(now)

        seen = key in self._seen
        self._seen[key] = now
        self._seen.move_to_end(key)
        if not seen:
            self._evict_overflow()
        return seen

    def _evict_expired(self, now: float) -> None:
        cutoff = now - self.ttl_seconds
        while self._seen:
            oldest_key, oldest_timestamp = next(iter(self._seen.items()))
            if oldest_timestamp >= cutoff:
                break
            self._seen.pop(oldest_key, None)

    def _evict_overflow(self) -> None:
        while len(self._seen) > self.max_size:
            self._seen.popitem(last=False)
