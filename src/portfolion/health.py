"""
=============================================================================
HEALTH CHECKS
=============================================================================

    /health         every registered check; 200 if all pass, else 503
    /health/live    process is up (never touches dependencies)
    /health/ready   same checks as /health, minimal body

Checks are plain callables returning a HealthStatus:

    health = HealthHandler()
    health.add_check("cache", cache_check(app.cache.store()))

    app.get("/health", health.handle)
    app.get("/health/live", health.liveness)
    app.get("/health/ready", health.readiness)

Health responses are never cached; a stale "healthy" from a proxy would
keep traffic flowing to a dead instance.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict
import logging
import platform
import time
import uuid

from .cache.base import CacheStore
from .http.request import HTTPRequest
from .http.response import HTTPResponse, ResponseBuilder

logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    healthy: bool
    message: str = "OK"
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "status": "healthy" if self.healthy else "unhealthy",
            "message": self.message,
            **self.details,
        }


HealthCheck = Callable[[], HealthStatus]


def cache_check(store: CacheStore) -> HealthCheck:
    """Round-trip a throwaway key through the store."""

    def check() -> HealthStatus:
        key = f"health:{uuid.uuid4().hex}"
        started = time.perf_counter()
        store.put(key, "ok", 10)
        value = store.pull(key)
        latency_ms = round((time.perf_counter() - started) * 1000, 2)
        if value != "ok":
            return HealthStatus(False, "Cache read-back failed", {"latency_ms": latency_ms})
        return HealthStatus(True, details={"latency_ms": latency_ms})

    return check


class HealthHandler:
    def __init__(self, include_details: bool = True, include_system_info: bool = False):
        self.include_details = include_details
        self.include_system_info = include_system_info
        self._checks: Dict[str, HealthCheck] = {}
        self._start_time = time.time()

    def add_check(self, name: str, check: HealthCheck) -> None:
        self._checks[name] = check

    def run_checks(self) -> Dict[str, HealthStatus]:
        results = {}
        for name, check in self._checks.items():
            try:
                results[name] = check()
            except Exception as e:
                logger.warning("Health check %s raised %s: %s", name, type(e).__name__, e)
                results[name] = HealthStatus(False, f"{type(e).__name__}: {e}")
        return results

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        results = self.run_checks()
        healthy = all(status.healthy for status in results.values())

        body: Dict[str, Any] = {
            "status": "healthy" if healthy else "unhealthy",
            "uptime_seconds": int(time.time() - self._start_time),
        }
        if self.include_details:
            body["checks"] = {name: status.to_dict() for name, status in results.items()}
        if self.include_system_info:
            body["system"] = {
                "hostname": platform.node(),
                "python": platform.python_version(),
            }
        return self._respond(body, healthy)

    def liveness(self, request: HTTPRequest) -> HTTPResponse:
        return self._respond({"status": "alive"}, True)

    def readiness(self, request: HTTPRequest) -> HTTPResponse:
        healthy = all(status.healthy for status in self.run_checks().values())
        return self._respond({"status": "ready" if healthy else "not ready"}, healthy)

    @staticmethod
    def _respond(body: Dict[str, Any], healthy: bool) -> HTTPResponse:
        return (ResponseBuilder()
            .status(200 if healthy else 503)
            .json(body)
            .no_cache()
            .build())
