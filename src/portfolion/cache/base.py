"""
=============================================================================
CACHE STORE CONTRACT
=============================================================================

Every cache driver implements the same small contract:

    get(key, default)            value, or default if absent/expired
    put(key, value, ttl)         ttl seconds; None → store default; <= 0 → forever
    has(key) / forget(key)
    increment(key, by)           absent or non-numeric starts at 0
    increment_with_expiry(key, ttl)
                                 counter + TTL in one atomic step
    ttl(key)                     seconds left, 0 = no expiry, None = absent
    flush()

and gets these for free from CacheStore:

    remember(key, ttl, producer) decrement, forever, pull, many, put_many

=============================================================================
LAZY EXPIRY
=============================================================================

An entry past its expires_at is gone as far as callers can tell, whether
or not the driver has physically removed it yet:

    put("k", "v", ttl=1)      expires_at = now + 1
    get("k")                  "v"
    ... 1.5s later ...
    get("k")                  default   (entry is dropped on this read)

Time comes from an injectable clock so tests can move it forward without
sleeping.

=============================================================================
REMEMBER AND SINGLE-FLIGHT
=============================================================================

remember() calls the producer at most once per call. Concurrent misses for
the same key inside one process are serialized on a per-key lock shard,
so only the first caller computes and the rest read its result:

    thread A: miss ─► lock ─► miss ─► producer() ─► put ─► unlock
    thread B: miss ─► lock (waits) ──────────────────────► hit

Across processes (Redis) this is best-effort: two processes may both
compute on a simultaneous miss.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Optional, Tuple
import threading
import time

Clock = Callable[[], float]

_MISSING = object()

LOCK_SHARDS = 64


class CacheStore(ABC):
    """Base class for cache drivers."""

    def __init__(
        self,
        prefix: str = "",
        default_ttl: Optional[float] = None,
        clock: Clock = time.time,
    ):
        self.prefix = prefix
        self.default_ttl = default_ttl
        self.clock = clock
        self._remember_locks = [threading.RLock() for _ in range(LOCK_SHARDS)]
        self._write_locks = [threading.RLock() for _ in range(LOCK_SHARDS)]

    # =========================================================================
    # DRIVER PRIMITIVES
    # =========================================================================

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value, or default when absent or expired."""

    @abstractmethod
    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Store value for ttl seconds."""

    @abstractmethod
    def forget(self, key: str) -> bool:
        """Remove key. True if something was removed."""

    @abstractmethod
    def increment(self, key: str, by: int = 1) -> int:
        """Add `by` to a numeric value and return the new value."""

    @abstractmethod
    def increment_with_expiry(self, key: str, ttl: float, by: int = 1) -> Tuple[int, float]:
        """
        Increment a counter and make sure it expires.

        The TTL is set when the counter is created (or found without one)
        in the same atomic step as the increment, so a counter can never be
        left behind without an expiry.

        Returns:
            (new count, seconds until the counter expires)
        """

    @abstractmethod
    def ttl(self, key: str) -> Optional[float]:
        """Seconds until expiry, 0 for no expiry, None when absent."""

    @abstractmethod
    def flush(self) -> bool:
        """Remove everything from the store."""

    # =========================================================================
    # DERIVED OPERATIONS
    # =========================================================================

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def decrement(self, key: str, by: int = 1) -> int:
        return self.increment(key, -by)

    def forever(self, key: str, value: Any) -> bool:
        return self.put(key, value, 0)

    def pull(self, key: str, default: Any = None) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            return default
        self.forget(key)
        return value

    def add(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Store value only if key is absent. True if it was stored."""
        with self._write_lock(key):
            if self.has(key):
                return False
            return self.put(key, value, ttl)

    def many(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {key: self.get(key) for key in keys}

    def put_many(self, values: Dict[str, Any], ttl: Optional[float] = None) -> bool:
        return all([self.put(key, value, ttl) for key, value in values.items()])

    def remember(self, key: str, ttl: Optional[float], producer: Callable[[], Any]) -> Any:
        """
        Return the cached value, or compute it with producer and cache it.

        producer runs at most once per call; concurrent callers in this
        process wait for the first one instead of computing again.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        with self._remember_lock(key):
            value = self.get(key, _MISSING)
            if value is not _MISSING:
                return value
            value = producer()
            self.put(key, value, ttl)
            return value

    def remember_forever(self, key: str, producer: Callable[[], Any]) -> Any:
        return self.remember(key, 0, producer)

    # =========================================================================
    # HELPERS FOR DRIVERS
    # =========================================================================

    def prefixed(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def expires_at(self, ttl: Optional[float]) -> Optional[float]:
        """Absolute expiry for a ttl, or None for entries that never expire."""
        if ttl is None:
            ttl = self.default_ttl
        if ttl is None or ttl <= 0:
            return None
        return self.clock() + ttl

    def is_expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self.clock() >= expires_at

    def _remember_lock(self, key: str) -> threading.RLock:
        return self._remember_locks[hash(key) % LOCK_SHARDS]

    def _write_lock(self, key: str) -> threading.RLock:
        return self._write_locks[hash(key) % LOCK_SHARDS]

    @staticmethod
    def to_number(value: Any) -> int:
        """Numeric view of a stored value; non-numeric values count as 0."""
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                try:
                    return int(float(value))
                except (ValueError, OverflowError):
                    return 0
        return 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}(prefix={self.prefix!r})"
