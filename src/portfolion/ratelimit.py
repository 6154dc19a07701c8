"""
=============================================================================
RATE LIMITER
=============================================================================

Fixed-window attempt counting on top of the cache.

    key = prefix + limiter + ":" + sha1(signature)

    first hit   ──► counter = 1, TTL = decay window   (one atomic step)
    next hits   ──► counter += 1                      (TTL untouched)
    window ends ──► cache drops the counter           (no explicit delete)

=============================================================================
SIGNATURES
=============================================================================

A limiter's `by` setting picks who is being counted:

    ip        client IP                      "203.0.113.9"
    user      authenticated user id          "42" / "guest"
    api_key   X-API-Key header               "k_live_..." / "no-key"
    route     route name, else the path      "api.tasks.index"

include_method / include_route add the HTTP method and the path, so the
default limiter counts "this IP on this endpoint":

    "203.0.113.9|POST|/api/tasks"  ──sha1──►  "b0d4..."

A `using` callable on the LimiterConfig replaces all of this.

=============================================================================
"""

from dataclasses import dataclass, fields
from typing import Any, Callable, Mapping, Optional
import hashlib
import logging
import math

from .cache.base import CacheStore

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "portfolion:ratelimit:"


@dataclass
class LimiterConfig:
    """One entry of api.rate_limiting.limiters."""

    name: str = "default"
    max_attempts: int = 60
    decay_minutes: float = 1
    decay_seconds: Optional[float] = None
    by: str = "ip"
    prefix: str = DEFAULT_PREFIX
    include_method: bool = True
    include_route: bool = True
    response_message: str = "Too Many Attempts."
    response_status: int = 429
    using: Optional[Callable[[Any], str]] = None

    @property
    def decay(self) -> float:
        """Window length in seconds."""
        if self.decay_seconds is not None:
            return float(self.decay_seconds)
        return float(self.decay_minutes) * 60

    @classmethod
    def from_mapping(cls, name: str, settings: Mapping[str, Any]) -> "LimiterConfig":
        known = {field.name for field in fields(cls)}
        values = {key: value for key, value in settings.items() if key in known}
        values["name"] = name
        limiter = cls(**values)
        if limiter.max_attempts < 1:
            raise ValueError(f"Limiter {name}: max_attempts must be >= 1")
        if limiter.decay <= 0:
            raise ValueError(f"Limiter {name}: decay must be > 0")
        return limiter


@dataclass
class RateLimitRecord:
    """Outcome of one hit against a limiter key."""

    key: str
    attempts: int
    max_attempts: int
    reset_at: float
    retry_after: int

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    @property
    def exceeded(self) -> bool:
        return self.attempts > self.max_attempts


def user_identifier(user: Any) -> Optional[str]:
    if user is None:
        return None
    if isinstance(user, Mapping):
        value = user.get("id")
    else:
        value = getattr(user, "id", None)
    return None if value is None else str(value)


def request_signature(request: Any, limiter: LimiterConfig) -> str:
    """Raw (unhashed) signature of a request for a limiter."""
    if limiter.using is not None:
        return str(limiter.using(request))

    if limiter.by == "user":
        parts = [user_identifier(request.user) or "guest"]
    elif limiter.by == "api_key":
        parts = [request.get_header("x-api-key") or "no-key"]
    elif limiter.by == "route":
        route = request.route
        parts = [getattr(route, "name", None) or request.path]
    else:
        parts = [request.client_ip]

    if limiter.include_method:
        parts.append(request.effective_method)
    if limiter.include_route:
        parts.append(request.path)
    return "|".join(parts)


class RateLimiter:
    """
    Attempt counter backed by a CacheStore.

    The store's increment_with_expiry() does the increment and the TTL
    in one step, so a counter never outlives its window.
    """

    def __init__(self, cache: CacheStore):
        self.cache = cache

    @staticmethod
    def key_for(limiter: LimiterConfig, signature: str) -> str:
        digest = hashlib.sha1(signature.encode("utf-8")).hexdigest()
        return f"{limiter.prefix}{limiter.name}:{digest}"

    def hit(self, key: str, decay: float, max_attempts: int) -> RateLimitRecord:
        """Count one attempt and describe where the key now stands."""
        attempts, seconds_left = self.cache.increment_with_expiry(key, decay)
        now = self.cache.clock()
        return RateLimitRecord(
            key=key,
            attempts=attempts,
            max_attempts=max_attempts,
            reset_at=now + seconds_left,
            retry_after=max(1, int(math.ceil(seconds_left))),
        )

    def attempts(self, key: str) -> int:
        return CacheStore.to_number(self.cache.get(key, 0))

    def remaining(self, key: str, max_attempts: int) -> int:
        return max(0, max_attempts - self.attempts(key))

    def too_many_attempts(self, key: str, max_attempts: int) -> bool:
        return self.attempts(key) >= max_attempts

    def available_in(self, key: str) -> int:
        """Seconds until the key's window closes (0 when not limited)."""
        ttl = self.cache.ttl(key)
        return int(math.ceil(ttl)) if ttl else 0

    def clear(self, key: str) -> None:
        self.cache.forget(key)

    def attempt(self, key: str, max_attempts: int, decay: float, callback: Callable[[], Any]) -> Any:
        """
        Run callback if the key still has attempts left.

        Returns the callback's result, or False when the key is limited.
        """
        record = self.hit(key, decay, max_attempts)
        if record.exceeded:
            logger.debug("Rate limit attempt refused for %s", key)
            return False
        return callback()
