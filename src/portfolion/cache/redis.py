"""
=============================================================================
REDIS CACHE STORE
=============================================================================

Backs the cache with a Redis server so counters and sessions are shared by
every worker process.

    put("tasks", [...], ttl=60)   SET portfolion_tasks '[...]' PX 60000
    get("tasks")                  GET portfolion_tasks → json.loads
    increment("hits")             INCRBY portfolion_hits 1
    ttl("tasks")                  PTTL → seconds

Values are stored as JSON text, so plain integers stay INCRBY-compatible.
Expiry is Redis' own: an expired key is never returned, which satisfies
lazy-expiry semantics for free.

=============================================================================
ATOMIC INCREMENT WITH EXPIRY
=============================================================================

Doing INCR and then EXPIRE from the client leaves a window where a crash
produces a counter that never expires. The Lua script below runs both
inside Redis as one unit, and also repairs a counter that somehow lost its
TTL:

    GET   key  → non-numeric?  DEL
    INCRBY key by
    PTTL  key  < 0            → PEXPIRE key ttl_ms
    return {count, PTTL key}

=============================================================================
"""

from typing import Any, Optional, Tuple
import json
import logging
import math

import redis

from .base import CacheStore

logger = logging.getLogger(__name__)


INCREMENT_WITH_EXPIRY_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current and not tonumber(current) then
    redis.call('DEL', KEYS[1])
end
local count = redis.call('INCRBY', KEYS[1], ARGV[1])
if redis.call('PTTL', KEYS[1]) < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return {count, redis.call('PTTL', KEYS[1])}
"""


class RedisStore(CacheStore):
    """
    Cache store on a redis-py client.

    Args:
        client: An existing redis.Redis instance (tests pass a mock)
        url: Connection URL used when no client is given
    """

    def __init__(self, client: Optional["redis.Redis"] = None, url: str = "redis://localhost:6379/0", **kwargs: Any):
        super().__init__(**kwargs)
        self.client = client if client is not None else redis.Redis.from_url(url, decode_responses=True)
        self._increment_script = self.client.register_script(INCREMENT_WITH_EXPIRY_SCRIPT)

    @staticmethod
    def _decode(raw: Any) -> Any:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

    def get(self, key: str, default: Any = None) -> Any:
        raw = self.client.get(self.prefixed(key))
        return default if raw is None else self._decode(raw)

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        if ttl is None:
            ttl = self.default_ttl
        payload = json.dumps(value)
        if ttl is not None and ttl > 0:
            return bool(self.client.set(self.prefixed(key), payload, px=int(math.ceil(ttl * 1000))))
        return bool(self.client.set(self.prefixed(key), payload))

    def forget(self, key: str) -> bool:
        return self.client.delete(self.prefixed(key)) > 0

    def increment(self, key: str, by: int = 1) -> int:
        full_key = self.prefixed(key)
        try:
            return int(self.client.incrby(full_key, by))
        except redis.exceptions.ResponseError:
            # Stored value is not an integer: restart the count, keep its TTL
            self.client.set(full_key, json.dumps(by), keepttl=True)
            return by

    def increment_with_expiry(self, key: str, ttl: float, by: int = 1) -> Tuple[int, float]:
        ttl_ms = max(1, int(math.ceil(ttl * 1000)))
        count, pttl = self._increment_script(keys=[self.prefixed(key)], args=[by, ttl_ms])
        return int(count), max(0.0, int(pttl) / 1000.0)

    def ttl(self, key: str) -> Optional[float]:
        pttl = int(self.client.pttl(self.prefixed(key)))
        if pttl == -2:
            return None
        if pttl == -1:
            return 0
        return pttl / 1000.0

    def flush(self) -> bool:
        removed = 0
        for full_key in self.client.scan_iter(match=f"{self.prefix}*"):
            removed += self.client.delete(full_key)
        logger.debug("Flushed %d redis keys with prefix %r", removed, self.prefix)
        return True
