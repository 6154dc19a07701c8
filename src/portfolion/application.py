"""
=============================================================================
APPLICATION
=============================================================================

The composition root. One Application object owns everything a request
needs, and nothing in the framework reaches for a global:

    Application
    ├── config        Config (layered: defaults, config/*.json, .env, env vars)
    ├── cache         CacheManager (stores built lazily from config)
    ├── router        Router (frozen on first request)
    ├── queue         SyncQueue by default
    └── pipeline      global middleware, ErrorHandlerMiddleware outermost

=============================================================================
REQUEST PATH
=============================================================================

    handle(request)
      └── ErrorHandlerMiddleware          never lets an exception out
            └── global middleware         app.use(...) in order
                  └── router.dispatch     route + group middleware, handler

use_defaults() installs the usual web stack in the usual order:

    LoggingMiddleware → CORSMiddleware → SessionMiddleware → DeadlineMiddleware

and route lists can name middleware by alias:

    "csrf"              CsrfMiddleware from security.csrf
    "throttle"          RateLimitMiddleware with the `default` limiter
    "throttle:<name>"   RateLimitMiddleware with any configured limiter
    "auth"              AuthMiddleware (resolvers set on app.auth)

=============================================================================
"""

from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Sequence
import logging
import time

from .cache.base import Clock
from .cache.manager import CacheManager
from .config import Config, ServerConfig
from .http.request import HTTPRequest
from .http.response import HTTPResponse, text
from .http.router import Router
from .middleware.auth import AuthMiddleware
from .middleware.base import Middleware, MiddlewarePipeline, NextHandler
from .middleware.cors import CORSConfig, CORSMiddleware
from .middleware.csrf import CsrfMiddleware
from .middleware.deadline import DeadlineMiddleware
from .middleware.errors import ErrorHandlerMiddleware
from .middleware.logging import LoggingMiddleware
from .middleware.rate_limit import RateLimitMiddleware
from .middleware.session import SessionMiddleware
from .queue import SyncQueue
from .server import HTTPServer

logger = logging.getLogger(__name__)


class Application:
    """
    Args:
        config: Loaded Config; defaults only when omitted
        cache: CacheManager to use instead of one built from config
        clock: Time source for cache stores (tests pass a fake one)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        cache: Optional[CacheManager] = None,
        clock: Clock = time.time,
    ):
        self.config = config or Config()
        self.cache = cache or CacheManager(self.config.section("cache"), clock=clock)
        self.router = Router()
        self.queue: Any = SyncQueue()
        self.pipeline = MiddlewarePipeline()
        self.error_handler = ErrorHandlerMiddleware(debug=self.config.debug)
        self.auth = AuthMiddleware()
        self._handler: Optional[NextHandler] = None
        self._register_aliases()

    # =========================================================================
    # MIDDLEWARE
    # =========================================================================

    def _register_aliases(self) -> None:
        csrf = self.config.section("security.csrf")
        self.router.alias("csrf", CsrfMiddleware(
            except_patterns=csrf.get("except"),
            enabled=bool(csrf.get("enabled", True)),
        ))
        self.router.alias("auth", self.auth)

        store = self.cache.store(self.config.get("api.rate_limiting.store"))
        self.router.alias("throttle", RateLimitMiddleware(store, self.config, "default"))
        for name in self.config.section("api.rate_limiting.limiters"):
            self.router.alias(f"throttle:{name}", RateLimitMiddleware(store, self.config, name))

    def use(self, *middleware: Middleware) -> "Application":
        """Append global middleware (outermost first)."""
        if self._handler is not None:
            raise RuntimeError("Middleware must be added before the first request")
        self.pipeline.use(*middleware)
        return self

    def alias(self, name: str, middleware: Middleware) -> None:
        self.router.alias(name, middleware)

    def use_defaults(self) -> "Application":
        """Install logging, CORS, sessions and deadlines from config."""
        logging_settings = self.config.section("logging")
        session_settings = self.config.section("session")
        session_store = self.cache.store(session_settings.get("store"))

        self.use(
            LoggingMiddleware(
                log_format=logging_settings.get("format", "text"),
                skip_paths=logging_settings.get("skip_paths"),
            ),
            CORSMiddleware(CORSConfig.from_mapping(self.config.section("security.cors"))),
            SessionMiddleware.from_config(session_store, session_settings),
        )
        deadline = self.config.get("server.request_deadline", 30.0)
        if deadline:
            self.use(DeadlineMiddleware(float(deadline)))
        return self

    # =========================================================================
    # ROUTES
    # =========================================================================

    def route(self, pattern: str, methods: Sequence[str] = ("GET",), **options: Any) -> Callable:
        return self.router.route(pattern, methods, **options)

    def get(self, pattern: str, handler: Optional[Callable] = None, **options: Any) -> Any:
        return self.router.get(pattern, handler, **options)

    def post(self, pattern: str, handler: Optional[Callable] = None, **options: Any) -> Any:
        return self.router.post(pattern, handler, **options)

    def put(self, pattern: str, handler: Optional[Callable] = None, **options: Any) -> Any:
        return self.router.put(pattern, handler, **options)

    def patch(self, pattern: str, handler: Optional[Callable] = None, **options: Any) -> Any:
        return self.router.patch(pattern, handler, **options)

    def delete(self, pattern: str, handler: Optional[Callable] = None, **options: Any) -> Any:
        return self.router.delete(pattern, handler, **options)

    def options(self, pattern: str, handler: Optional[Callable] = None, **options: Any) -> Any:
        return self.router.options(pattern, handler, **options)

    @contextmanager
    def group(self, prefix: str = "", middleware: Sequence[Any] = (), name: str = "") -> Iterator[Router]:
        with self.router.group(prefix, middleware, name) as router:
            yield router

    def url_for(self, name: str, **params: Any) -> str:
        return self.router.url_for(name, **params)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def build(self) -> NextHandler:
        """Freeze routes and compose the global chain (idempotent)."""
        if self._handler is None:
            self.router.freeze()
            chain = MiddlewarePipeline([self.error_handler, *self.pipeline])
            self._handler = chain.wrap(self.router.dispatch)
            logger.info("Application ready: %d routes, %d global middleware", len(self.router.routes), len(self.pipeline))
        return self._handler

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Run one request through the whole stack. Always returns a response."""
        handler = self.build()
        try:
            return handler(request)
        except Exception:
            # Only reachable if the error handler itself is bypassed
            logger.exception("Request escaped the error handler: %s %s", request.method, request.path)
            return text("Internal Server Error", status=500)

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        return self.handle(request)

    def serve(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Run the built-in HTTP server until interrupted."""
        server_config = ServerConfig.from_config(self.config)
        if host:
            server_config.host = host
        if port is not None:
            server_config.port = port
        HTTPServer(self, server_config).run()
