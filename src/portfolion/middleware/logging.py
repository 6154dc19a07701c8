"""
=============================================================================
ACCESS LOG MIDDLEWARE
=============================================================================

One line per request on the `portfolion.access` logger:

    text   203.0.113.9 - - [01/Jan/2026:12:00:00 +0000] "POST /tasks" 302 0 3.41ms
    json   {"request_id": "9f2c1ab0", "method": "POST", "path": "/tasks", ...}

Every request gets a short id, stored in request.state["request_id"] for
downstream code and returned to the client as X-Request-ID.

Place it just inside the error handler so the logged status is the one the
client actually receives, including error responses.

=============================================================================
"""

from dataclasses import asdict, dataclass
from typing import Iterable, Optional
import json
import logging
import time
import uuid

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse
from .base import Middleware, NextHandler

logger = logging.getLogger("portfolion.access")


@dataclass
class RequestLog:
    request_id: str
    method: str
    path: str
    query: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["duration_ms"] = round(self.duration_ms, 2)
        return data

    def to_text(self) -> str:
        path = f"{self.path}?{self.query}" if self.query else self.path
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {path}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )


class LoggingMiddleware(Middleware):
    """
    Args:
        log_format: "text" (combined-log style) or "json"
        include_request_id: Add X-Request-ID to responses
        log_level: Level used for access lines
        skip_paths: Paths that are never logged (health checks)
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = set(skip_paths or ())

    def handle(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        request_id = request.get_header("x-request-id") or uuid.uuid4().hex[:8]
        request.state["request_id"] = request_id
        started = time.perf_counter()

        try:
            response = next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.error(
                "Request failed: %s %s - %s: %s (%.2fms)",
                request.method, request.path, type(e).__name__, e, duration_ms,
            )
            raise

        duration_ms = (time.perf_counter() - started) * 1000

        if self.include_request_id:
            response.set_header("X-Request-ID", request_id)

        if request.path in self.skip_paths:
            return response

        entry = RequestLog(
            request_id=request_id,
            method=request.method,
            path=request.path,
            query="&".join(f"{key}={value}" for key, values in request.query_params.items() for value in values),
            client_ip=request.client_ip,
            user_agent=request.user_agent or "-",
            status_code=response.status,
            content_length=len(response.body),
            duration_ms=duration_ms,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )
        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(entry.to_dict()))
        else:
            logger.log(self.log_level, entry.to_text())
        return response
