"""
=============================================================================
REQUEST DEADLINES
=============================================================================

Python threads cannot be interrupted, so a deadline is cooperative: the
middleware stamps one on the request and long-running code checks it.

    deadline = request.deadline
    for row in rows:
        deadline.check()          # raises DeadlineExceededError when late
        ...

If the handler returns after the deadline anyway, the client still gets
504 rather than a response it has probably stopped waiting for.

=============================================================================
"""

from typing import Callable
import logging
import time

from ..errors import DeadlineExceededError
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, gateway_timeout
from .base import Middleware, NextHandler

logger = logging.getLogger(__name__)


class Deadline:
    def __init__(self, timeout: float, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._clock = clock
        self.expires_at = clock() + timeout

    @property
    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def check(self) -> None:
        if self.expired:
            raise DeadlineExceededError()


class DeadlineMiddleware(Middleware):
    def __init__(self, timeout: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self.clock = clock

    def handle(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        deadline = Deadline(self.timeout, self.clock)
        request.state["deadline"] = deadline

        try:
            response = next(request)
        except DeadlineExceededError as e:
            logger.warning("Deadline exceeded: %s %s", request.method, request.path)
            return gateway_timeout(e.message)

        if deadline.expired:
            logger.warning(
                "Handler finished after deadline (%.1fs): %s %s",
                self.timeout, request.method, request.path,
            )
            return gateway_timeout()
        return response
