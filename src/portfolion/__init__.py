"""
Portfolion - a small synchronous web framework.

    from portfolion import Application

    app = Application().use_defaults()

    @app.get("/hello/{name}")
    def hello(request):
        return {"hello": request.route_params["name"]}

    app.serve(port=8080)
"""

from .application import Application
from .config import Config, ServerConfig
from .errors import (
    AuthenticationError,
    ConfigError,
    DeadlineExceededError,
    DuplicateRouteError,
    HTTPError,
    MethodNotAllowedError,
    MissingRouteParamError,
    PortfolionError,
    RateLimitExceededError,
    RouteNotFoundError,
    RoutingError,
    SecurityException,
    UnknownRouteNameError,
    ValidationError,
)
from .http.request import HTTPRequest
from .http.response import HTTPResponse, ResponseBuilder
from .http.router import Router
from .validation import ValidationResult, Validator

__version__ = "1.0.0"

__all__ = [
    "Application",
    "Config",
    "ServerConfig",
    "HTTPRequest",
    "HTTPResponse",
    "ResponseBuilder",
    "Router",
    "Validator",
    "ValidationResult",
    "PortfolionError",
    "ConfigError",
    "RoutingError",
    "DuplicateRouteError",
    "UnknownRouteNameError",
    "MissingRouteParamError",
    "HTTPError",
    "RouteNotFoundError",
    "MethodNotAllowedError",
    "AuthenticationError",
    "SecurityException",
    "ValidationError",
    "RateLimitExceededError",
    "DeadlineExceededError",
]
