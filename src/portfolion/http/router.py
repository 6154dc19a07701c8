"""
=============================================================================
URL ROUTER
=============================================================================

Maps (method, path) to a handler, extracts path parameters and runs the
route's own middleware around the handler.

=============================================================================
ROUTE PATTERNS
=============================================================================

    /tasks                  static, exact match
    /tasks/{id}             one segment        /tasks/42   → {"id": "42"}
    /tasks/{id:int}         constrained        /tasks/abc  → 404, not a match
    /users/{id:\\d{1,6}}     inline regex
    /files/{path*}          trailing wildcard  /files/a/b  → {"path": "a/b"}

Named constraints: int, alpha, alnum, slug, uuid. Constraints may also be
given per route with where={"id": "int"}. A request that violates a
constraint simply does not match that route; the handler never sees an
unvalidated value.

Segment counts are exact unless the pattern ends in a wildcard. Trailing
slashes are ignored on both sides ("/tasks/" is "/tasks").

=============================================================================
ROUTE TABLE
=============================================================================

    ┌──────────┬──────────────────────────────────────────────┐
    │  GET     │  /            /tasks        /tasks/{id:int}  │
    │  POST    │  /tasks                                      │
    │  PUT     │  /tasks/{id:int}                             │
    │  DELETE  │  /tasks/{id:int}                             │
    │  ...     │                                              │
    └──────────┴──────────────────────────────────────────────┘

One list per method, searched in registration order, first match wins.
Registering the same (method, pattern) twice raises DuplicateRouteError.
The table is frozen on the first dispatch; it is read-only from then on so
worker threads can share it without locks.

=============================================================================
GROUPS
=============================================================================

    with router.group("/api", middleware=[throttle], name="api."):
        router.get("/tasks", list_tasks, name="tasks.index")
        # → GET /api/tasks, named "api.tasks.index", middleware [throttle]

        with router.group("/admin", middleware=[auth]):
            router.delete("/tasks/{id}", purge)
            # → middleware [throttle, auth], parent first

=============================================================================
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Pattern, Sequence, Tuple
from urllib.parse import quote, urlencode
import logging
import re

from ..errors import (
    DuplicateRouteError,
    MethodNotAllowedError,
    MissingRouteParamError,
    RouteNotFoundError,
    RoutingError,
    UnknownRouteNameError,
)
from ..middleware.base import MiddlewarePipeline
from .request import HTTPRequest
from .response import HTTPResponse, make_response

logger = logging.getLogger(__name__)

Handler = Callable[[HTTPRequest], Any]

METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")

# {name}, {name*}, {name:constraint}; the constraint may contain one level of
# braces so quantifiers like \d{4} work inline.
PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)(\*)?(?::((?:[^{}]|\{[^{}]*\})+))?\}")

CONSTRAINTS = {
    "int": r"\d+",
    "alpha": r"[A-Za-z]+",
    "alnum": r"[A-Za-z0-9]+",
    "slug": r"[a-z0-9]+(?:-[a-z0-9]+)*",
    "uuid": r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}",
}


def normalize_path(path: str) -> str:
    """Leading slash, no trailing slash, no empty segments."""
    path = re.sub(r"/{2,}", "/", "/" + path.strip())
    if len(path) > 1:
        path = path.rstrip("/")
    return path


def compile_pattern(pattern: str, where: Optional[Mapping[str, str]] = None) -> Tuple[Pattern, Tuple[str, ...]]:
    """
    Compile a route pattern into an anchored regex.

        /tasks/{id:int}/notes/{slug}
        ^/tasks/(?P<id>\\d+)/notes/(?P<slug>[^/]+)$

    Raises:
        ValueError: for repeated placeholders or a wildcard that is not last.
    """
    where = where or {}
    names: List[str] = []
    regex = ""
    position = 0

    for match in PLACEHOLDER_PATTERN.finditer(pattern):
        name, star, inline = match.groups()
        literal = pattern[position:match.start()]
        if name in names:
            raise ValueError(f"Placeholder '{name}' appears twice in {pattern}")
        names.append(name)

        if star:
            if pattern[match.end():]:
                raise ValueError(f"Wildcard '{{{name}*}}' must end the pattern: {pattern}")
            if literal.endswith("/"):
                # "/files/{path*}" also matches "/files"
                regex += re.escape(literal[:-1]) + rf"(?:/(?P<{name}>.*))?"
            else:
                regex += re.escape(literal) + rf"(?P<{name}>.*)"
        else:
            constraint = where.get(name, inline)
            body = CONSTRAINTS.get(constraint, constraint) if constraint else r"[^/]+"
            regex += re.escape(literal) + rf"(?P<{name}>{body})"
        position = match.end()

    regex += re.escape(pattern[position:])
    return re.compile(f"^{regex}$"), tuple(names)


@dataclass(frozen=True)
class Route:
    """
    A registered route. Immutable once created.

    `middleware` holds the full, already-concatenated chain (group
    middleware first, then the route's own).
    """

    method: str
    pattern: str
    handler: Handler
    regex: Pattern = field(repr=False, compare=False)
    param_names: Tuple[str, ...] = ()
    middleware: Tuple[Any, ...] = ()
    name: Optional[str] = None

    def match(self, path: str) -> Optional[Dict[str, str]]:
        found = self.regex.match(path)
        if found is None:
            return None
        return {key: value or "" for key, value in found.groupdict().items()}

    def build_path(self, params: Mapping[str, Any]) -> str:
        def substitute(match: "re.Match") -> str:
            name, star = match.group(1), match.group(2)
            if name not in params or params[name] is None:
                if star:
                    return ""
                raise MissingRouteParamError(self.name or self.pattern, name)
            return quote(str(params[name]), safe="/" if star else "")

        return normalize_path(PLACEHOLDER_PATTERN.sub(substitute, self.pattern))


@dataclass
class RouteMatch:
    """Result of a successful resolve()."""

    route: Route
    params: Dict[str, str] = field(default_factory=dict)

    @property
    def handler(self) -> Handler:
        return self.route.handler

    @property
    def middleware(self) -> Tuple[Any, ...]:
        return self.route.middleware


@dataclass
class _GroupScope:
    prefix: str = ""
    middleware: Tuple[Any, ...] = ()
    name: str = ""


class Router:
    """
    Route table plus dispatch.

    Example:
        router = Router()

        @router.get("/tasks/{id:int}", name="tasks.show")
        def show(request):
            return {"id": int(request.route_params["id"])}

        router.url_for("tasks.show", id=7)   # "/tasks/7"
    """

    def __init__(self, aliases: Optional[Mapping[str, Any]] = None):
        self._routes: Dict[str, List[Route]] = {method: [] for method in METHODS}
        self._named: Dict[str, Route] = {}
        self._scopes: List[_GroupScope] = []
        self._aliases: Dict[str, Any] = dict(aliases or {})
        self._frozen = False

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def alias(self, name: str, middleware: Any) -> None:
        """Give a middleware instance a short name usable in route lists."""
        self._aliases[name] = middleware

    def register(
        self,
        method: str,
        pattern: str,
        handler: Handler,
        middleware: Sequence[Any] = (),
        name: Optional[str] = None,
        where: Optional[Mapping[str, str]] = None,
    ) -> Route:
        """
        Add a route inside the current group scope.

        Raises:
            DuplicateRouteError: (method, pattern) already registered
            RoutingError: unknown middleware alias or duplicate route name
            RuntimeError: the table has been frozen
        """
        if self._frozen:
            raise RuntimeError("Router is frozen; routes must be registered at startup")

        method = method.upper()
        if method not in METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        prefix = "".join(scope.prefix for scope in self._scopes)
        full_pattern = normalize_path(prefix.rstrip("/") + "/" + pattern.lstrip("/"))

        if any(route.pattern == full_pattern for route in self._routes[method]):
            raise DuplicateRouteError(method, full_pattern)

        chain: List[Any] = []
        for scope in self._scopes:
            chain.extend(scope.middleware)
        chain.extend(self._resolve_middleware(middleware))

        full_name = None
        if name:
            full_name = "".join(scope.name for scope in self._scopes) + name
            if full_name in self._named:
                raise RoutingError(f"Route name already registered: {full_name}")

        regex, param_names = compile_pattern(full_pattern, where)
        route = Route(
            method=method,
            pattern=full_pattern,
            handler=handler,
            regex=regex,
            param_names=param_names,
            middleware=tuple(chain),
            name=full_name,
        )
        self._routes[method].append(route)
        if full_name:
            self._named[full_name] = route

        logger.debug("Registered %s %s", method, full_pattern)
        return route

    def _resolve_middleware(self, middleware: Sequence[Any]) -> List[Any]:
        resolved = []
        for item in middleware:
            if isinstance(item, str):
                if item not in self._aliases:
                    raise RoutingError(f"Unknown middleware alias: {item}")
                item = self._aliases[item]
            resolved.append(item)
        return resolved

    def route(self, pattern: str, methods: Sequence[str] = ("GET",), **options: Any) -> Callable[[Handler], Handler]:
        """Decorator registering a handler for one or more methods."""
        def decorator(handler: Handler) -> Handler:
            for method in methods:
                self.register(method, pattern, handler, **options)
            return handler
        return decorator

    # get/post/... work both ways:
    #     router.get("/tasks", index)          → Route
    #     @router.get("/tasks")                → decorator

    def _shortcut(self, method: str, pattern: str, handler: Optional[Handler], options: Dict[str, Any]) -> Any:
        if handler is None:
            return self.route(pattern, methods=(method,), **options)
        return self.register(method, pattern, handler, **options)

    def get(self, pattern: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self._shortcut("GET", pattern, handler, options)

    def post(self, pattern: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self._shortcut("POST", pattern, handler, options)

    def put(self, pattern: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self._shortcut("PUT", pattern, handler, options)

    def patch(self, pattern: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self._shortcut("PATCH", pattern, handler, options)

    def delete(self, pattern: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self._shortcut("DELETE", pattern, handler, options)

    def options(self, pattern: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self._shortcut("OPTIONS", pattern, handler, options)

    @contextmanager
    def group(self, prefix: str = "", middleware: Sequence[Any] = (), name: str = "") -> Iterator["Router"]:
        """Registration scope adding a prefix, middleware and name prefix."""
        scope = _GroupScope(
            prefix="/" + prefix.strip("/") if prefix.strip("/") else "",
            middleware=tuple(self._resolve_middleware(middleware)),
            name=name,
        )
        self._scopes.append(scope)
        try:
            yield self
        finally:
            self._scopes.pop()

    def freeze(self) -> None:
        if not self._frozen:
            self._frozen = True
            logger.debug("Route table frozen with %d routes", len(self.routes))

    @property
    def frozen(self) -> bool:
        return self._frozen

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def resolve(self, method: str, path: str) -> RouteMatch:
        """
        Find the route for (method, path).

        HEAD falls back to the GET route of the same path.

        Raises:
            RouteNotFoundError: nothing matches the path
            MethodNotAllowedError: the path exists for other methods only
        """
        method = method.upper()
        path = normalize_path(path)

        candidates = list(self._routes.get(method, ()))
        if method == "HEAD":
            candidates.extend(self._routes["GET"])

        for route in candidates:
            params = route.match(path)
            if params is not None:
                return RouteMatch(route=route, params=params)

        allowed = self.allowed_methods(path)
        if allowed:
            raise MethodNotAllowedError(method, path, allowed)
        raise RouteNotFoundError(method, path)

    def allowed_methods(self, path: str) -> List[str]:
        path = normalize_path(path)
        allowed = {
            method
            for method, routes in self._routes.items()
            if any(route.match(path) is not None for route in routes)
        }
        if "GET" in allowed:
            allowed.add("HEAD")
        return sorted(allowed)

    def dispatch(self, request: HTTPRequest) -> HTTPResponse:
        """
        Resolve the request and run route middleware + handler.

        Routing uses request.effective_method so a POST with
        `_method=DELETE` reaches the DELETE route.
        """
        self.freeze()
        match = self.resolve(request.effective_method, request.path)
        request.route_params = dict(match.params)
        request.route = match.route

        def endpoint(req: HTTPRequest) -> HTTPResponse:
            return make_response(match.handler(req))

        return MiddlewarePipeline(match.middleware).wrap(endpoint)(request)

    # =========================================================================
    # REVERSE ROUTING
    # =========================================================================

    def url_for(self, name: str, **params: Any) -> str:
        """
        Build the path of a named route.

        Parameters that are not placeholders become the query string.

        Raises:
            UnknownRouteNameError: no route has that name
            MissingRouteParamError: a required placeholder was not supplied
        """
        route = self._named.get(name)
        if route is None:
            raise UnknownRouteNameError(name)
        path = route.build_path(params)
        extra = {key: value for key, value in params.items() if key not in route.param_names}
        if extra:
            path += "?" + urlencode(extra, doseq=True)
        return path

    def has_route(self, name: str) -> bool:
        return name in self._named

    @property
    def routes(self) -> List[Route]:
        return [route for method in METHODS for route in self._routes[method]]

    def describe(self) -> List[str]:
        """One line per route, for the `routes` CLI command."""
        lines = []
        for route in self.routes:
            label = f" ({route.name})" if route.name else ""
            lines.append(f"{route.method:8} {route.pattern}{label}")
        return lines
