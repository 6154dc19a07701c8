"""
In-process cache store (the "array" driver).

Entries live in a dict as (value, expires_at). Reads drop expired entries
lazily; writes that read-modify-write (increment, add) hold the key's lock
shard so concurrent workers never lose an update.
"""

from typing import Any, Dict, Optional, Tuple
import logging

from .base import CacheStore

logger = logging.getLogger(__name__)


class MemoryStore(CacheStore):
    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _entry(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if self.is_expired(entry[1]):
            # Only drop it if nobody replaced it in the meantime
            if self._data.get(key) is entry:
                self._data.pop(key, None)
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entry(self.prefixed(key))
        return default if entry is None else entry[0]

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        self._data[self.prefixed(key)] = (value, self.expires_at(ttl))
        return True

    def forget(self, key: str) -> bool:
        full_key = self.prefixed(key)
        found = self._entry(full_key) is not None
        self._data.pop(full_key, None)
        return found

    def increment(self, key: str, by: int = 1) -> int:
        full_key = self.prefixed(key)
        with self._write_lock(full_key):
            entry = self._entry(full_key)
            if entry is None:
                value, expires_at = by, None
            else:
                value, expires_at = self.to_number(entry[0]) + by, entry[1]
            self._data[full_key] = (value, expires_at)
            return value

    def increment_with_expiry(self, key: str, ttl: float, by: int = 1) -> Tuple[int, float]:
        full_key = self.prefixed(key)
        with self._write_lock(full_key):
            entry = self._entry(full_key)
            if entry is None or entry[1] is None:
                count = by if entry is None else self.to_number(entry[0]) + by
                expires_at = self.clock() + ttl
            else:
                count, expires_at = self.to_number(entry[0]) + by, entry[1]
            self._data[full_key] = (count, expires_at)
            return count, max(0.0, expires_at - self.clock())

    def ttl(self, key: str) -> Optional[float]:
        entry = self._entry(self.prefixed(key))
        if entry is None:
            return None
        if entry[1] is None:
            return 0
        return max(0.0, entry[1] - self.clock())

    def flush(self) -> bool:
        self._data.clear()
        return True

    def purge_expired(self) -> int:
        """Physically remove expired entries. Returns how many were dropped."""
        expired = [key for key, (_, expires_at) in list(self._data.items()) if self.is_expired(expires_at)]
        for key in expired:
            self._data.pop(key, None)
        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)
