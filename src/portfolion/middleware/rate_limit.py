"""
=============================================================================
RATE LIMITING MIDDLEWARE
=============================================================================

Throttles requests per limiter signature (see portfolion.ratelimit).

    api.rate_limiting.enabled                 master switch, read per request
    api.rate_limiting.limiters.<name>         max_attempts, decay_minutes, by, ...

=============================================================================
HEADERS
=============================================================================

Allowed request (count ≤ max):

    X-RateLimit-Limit:      3
    X-RateLimit-Remaining:  2            max - count, never below 0

On the last allowed request (remaining == 0) and on every rejection:

    Retry-After:            60           seconds until the window closes
    X-RateLimit-Reset:      1767225660   epoch seconds of the same moment

Rejected request (count > max): the handler is not called and the client
gets

    HTTP/1.1 429 Too Many Requests
    {"error": "Too Many Attempts.", "retry_after": 60}

=============================================================================
"""

from typing import Dict, Optional, Union
import logging

from ..cache.base import CacheStore
from ..config import Config
from ..errors import RateLimitExceededError
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, json_response
from ..ratelimit import LimiterConfig, RateLimiter, RateLimitRecord, request_signature
from .base import Middleware, NextHandler

logger = logging.getLogger(__name__)


class RateLimitMiddleware(Middleware):
    """
    Args:
        cache: Store holding the counters (shared by all workers)
        config: Framework config; supplies the master switch and limiter
        limiter: Limiter name under api.rate_limiting.limiters, or a
                 ready LimiterConfig
    """

    def __init__(
        self,
        cache: CacheStore,
        config: Optional[Config] = None,
        limiter: Union[str, LimiterConfig] = "default",
    ):
        self.config = config or Config()
        self.limiter = limiter if isinstance(limiter, LimiterConfig) else self._load_limiter(limiter)
        self.rate_limiter = RateLimiter(cache)

    def _load_limiter(self, name: str) -> LimiterConfig:
        settings = self.config.get(f"api.rate_limiting.limiters.{name}")
        if settings is None:
            logger.warning("Rate limiter %s is not configured, using defaults", name)
            settings = {}
        return LimiterConfig.from_mapping(name, settings)

    @property
    def name(self) -> str:
        return f"throttle:{self.limiter.name}"

    @property
    def enabled(self) -> bool:
        return bool(self.config.get("api.rate_limiting.enabled", True))

    def handle(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if not self.enabled:
            return next(request)

        try:
            record = self.throttle(request)
        except RateLimitExceededError as e:
            return self._reject(e)

        response = next(request)
        return self._add_headers(response, record)

    def throttle(self, request: HTTPRequest) -> RateLimitRecord:
        """
        Count one hit for the request.

        Raises:
            RateLimitExceededError: the limiter's budget is spent
        """
        limiter = self.limiter
        key = RateLimiter.key_for(limiter, request_signature(request, limiter))
        record = self.rate_limiter.hit(key, limiter.decay, limiter.max_attempts)

        if record.exceeded:
            logger.warning(
                "Rate limit exceeded: limiter=%s ip=%s %s %s attempts=%d",
                limiter.name, request.client_ip, request.method, request.path, record.attempts,
            )
            raise RateLimitExceededError(
                record.retry_after,
                message=limiter.response_message,
                status_code=limiter.response_status,
                headers=self._headers(record),
            )
        return record

    @staticmethod
    def _reject(error: RateLimitExceededError) -> HTTPResponse:
        response = json_response(error.to_dict(), status=error.status_code)
        for name, value in error.headers.items():
            response.set_header(name, value)
        return response

    @classmethod
    def _add_headers(cls, response: HTTPResponse, record: RateLimitRecord) -> HTTPResponse:
        for name, value in cls._headers(record).items():
            response.set_header(name, value)
        return response

    @staticmethod
    def _headers(record: RateLimitRecord) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(record.max_attempts),
            "X-RateLimit-Remaining": str(record.remaining),
        }
        if record.remaining == 0:
            headers["Retry-After"] = str(record.retry_after)
            headers["X-RateLimit-Reset"] = str(int(record.reset_at))
        return headers
