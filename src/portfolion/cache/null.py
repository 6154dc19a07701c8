"""
Null cache store: accepts writes, remembers nothing.

Useful to switch caching off without touching call sites. increment()
still returns a sensible count (as if starting from 0) so rate limiting
degrades to "every request is the first".
"""

from typing import Any, Optional, Tuple

from .base import CacheStore


class NullStore(CacheStore):
    def get(self, key: str, default: Any = None) -> Any:
        return default

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        return True

    def forget(self, key: str) -> bool:
        return False

    def increment(self, key: str, by: int = 1) -> int:
        return by

    def increment_with_expiry(self, key: str, ttl: float, by: int = 1) -> Tuple[int, float]:
        return by, float(ttl)

    def ttl(self, key: str) -> Optional[float]:
        return None

    def flush(self) -> bool:
        return True
