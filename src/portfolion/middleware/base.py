"""
=============================================================================
MIDDLEWARE INTERFACE AND PIPELINE
=============================================================================

Every middleware has one method:

    handle(request, next) -> response

and may do any of three things:

    (a) work before calling next(request)
    (b) inspect or change the response after next() returns
    (c) return its own response without calling next at all

=============================================================================
THE ONION
=============================================================================

    pipeline = MiddlewarePipeline([A, B, C])
    app = pipeline.wrap(H)

    ┌─ A ──────────────────────────────────────────┐
    │  ┌─ B ────────────────────────────────┐      │
    │  │  ┌─ C ───────────────────┐         │      │
    │  │  │                       │         │      │
    │  │  │          H            │         │      │
    │  │  │                       │         │      │
    │  │  └───────────────────────┘         │      │
    │  └────────────────────────────────────┘      │
    └──────────────────────────────────────────────┘

    call order:  A-before  B-before  C-before  H  C-after  B-after  A-after

If B short-circuits, C and H never run but A still sees B's response.
An exception raised anywhere travels outward through every enclosing
link until one of them catches it; ErrorHandlerMiddleware sits outermost
so something always does.

The chain is a set of closures built by wrap(). Building is cheap and
happens per dispatch for route middleware, so middleware objects must
keep per-request data on the request, not on self.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, List, Optional
import logging

if TYPE_CHECKING:
    from ..http.request import HTTPRequest
    from ..http.response import HTTPResponse

logger = logging.getLogger(__name__)

NextHandler = Callable[["HTTPRequest"], "HTTPResponse"]


class Middleware(ABC):
    """
    Base class for middleware.

        class Timing(Middleware):
            def handle(self, request, next):
                started = time.perf_counter()
                response = next(request)
                response.set_header("X-Elapsed", f"{time.perf_counter() - started:.3f}")
                return response
    """

    @abstractmethod
    def handle(self, request: "HTTPRequest", next: NextHandler) -> "HTTPResponse":
        """Process the request, usually by delegating to next(request)."""

    def __call__(self, request: "HTTPRequest", next: NextHandler) -> "HTTPResponse":
        return self.handle(request, next)

    @property
    def name(self) -> str:
        return self.__class__.__name__


class MiddlewarePipeline:
    """
    An ordered list of middleware that can wrap a terminal handler.

    The first middleware added is the outermost layer.
    """

    def __init__(self, middleware: Iterable[Middleware] = ()):
        self._middleware: List[Middleware] = []
        self.use(*middleware)

    def add(self, middleware: Middleware) -> "MiddlewarePipeline":
        if not callable(middleware):
            raise TypeError(f"Middleware must be callable, got {type(middleware).__name__}")
        self._middleware.append(middleware)
        logger.debug("Added middleware: %s", _name_of(middleware))
        return self

    def use(self, *middleware: Middleware) -> "MiddlewarePipeline":
        for item in middleware:
            self.add(item)
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        """
        Compose the middleware around handler.

        Given [A, B, C] the result is A(B(C(handler))): wrap in reverse so
        the first added ends up outermost.
        """
        current = handler
        for middleware in reversed(self._middleware):
            current = self._link(middleware, current)
        return current

    @staticmethod
    def _link(middleware: Middleware, next_handler: NextHandler) -> NextHandler:
        def link(request: "HTTPRequest") -> "HTTPResponse":
            return middleware(request, next_handler)
        return link

    def __len__(self) -> int:
        return len(self._middleware)

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self._middleware)


class FunctionMiddleware(Middleware):
    """Adapts a plain `func(request, next)` to the Middleware interface."""

    def __init__(
        self,
        func: Callable[["HTTPRequest", NextHandler], "HTTPResponse"],
        name: Optional[str] = None,
    ):
        self._func = func
        self._name = name or func.__name__

    def handle(self, request: "HTTPRequest", next: NextHandler) -> "HTTPResponse":
        return self._func(request, next)

    @property
    def name(self) -> str:
        return self._name


def function_middleware(
    func: Callable[["HTTPRequest", NextHandler], "HTTPResponse"]
) -> FunctionMiddleware:
    """
    Decorator form of FunctionMiddleware.

        @function_middleware
        def powered_by(request, next):
            response = next(request)
            response.set_header("X-Powered-By", "Portfolion")
            return response
    """
    return FunctionMiddleware(func)


def _name_of(middleware: object) -> str:
    return getattr(middleware, "name", None) or getattr(middleware, "__name__", type(middleware).__name__)
