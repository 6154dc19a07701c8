"""
=============================================================================
FRAMEWORK ERRORS
=============================================================================

Every failure the framework raises on purpose lives here.

=============================================================================
TAXONOMY
=============================================================================

    PortfolionError
    ├── ConfigError                 bad or missing configuration
    ├── RoutingError                route table misuse (startup time)
    │   ├── DuplicateRouteError
    │   ├── UnknownRouteNameError
    │   └── MissingRouteParamError
    └── HTTPError                   carries a status code
        ├── RouteNotFoundError          404
        ├── MethodNotAllowedError       405
        ├── AuthenticationError         401
        ├── SecurityException           403  (CSRF)
        ├── ValidationError             422
        ├── RateLimitExceededError      429
        └── DeadlineExceededError       504

=============================================================================
WHO RECOVERS WHAT
=============================================================================

    ValidationError, RouteNotFoundError  →  controller / router boundary
    SecurityException                    →  CsrfMiddleware
    RateLimitExceededError               →  RateLimitMiddleware
    everything else                      →  ErrorHandlerMiddleware (outermost)

HTTPError subclasses know how to describe themselves as a JSON body via
to_dict(), so the outermost boundary never needs a type switch.

=============================================================================
"""

from typing import Any, Dict, List, Optional


class PortfolionError(Exception):
    """Base class for all framework errors."""


class ConfigError(PortfolionError):
    """Raised when configuration is invalid or cannot be loaded."""


# =============================================================================
# ROUTING (registration time)
# =============================================================================

class RoutingError(PortfolionError):
    """Base class for route table errors."""


class DuplicateRouteError(RoutingError):
    def __init__(self, method: str, pattern: str):
        self.method = method
        self.pattern = pattern
        super().__init__(f"Route already registered: {method} {pattern}")


class UnknownRouteNameError(RoutingError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No route named '{name}'")


class MissingRouteParamError(RoutingError):
    def __init__(self, name: str, param: str):
        self.name = name
        self.param = param
        super().__init__(f"Route '{name}' requires parameter '{param}'")


# =============================================================================
# HTTP ERRORS (request time)
# =============================================================================

class HTTPError(PortfolionError):
    """
    An error that maps directly onto an HTTP response.

    Attributes:
        status_code: HTTP status to respond with
        message: Human readable message (safe to show to clients)
        headers: Extra response headers (e.g. Allow, Retry-After)
    """

    status_code: int = 500
    default_message: str = "Server Error"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.headers = dict(headers or {})
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "message": self.message,
            "code": self.status_code,
        }


class RouteNotFoundError(HTTPError):
    status_code = 404
    default_message = "Not Found"

    def __init__(self, method: str = "", path: str = ""):
        self.method = method
        self.path = path
        super().__init__(f"No route for {method} {path}" if path else None)


class MethodNotAllowedError(HTTPError):
    status_code = 405
    default_message = "Method Not Allowed"

    def __init__(self, method: str, path: str, allowed: List[str]):
        self.method = method
        self.path = path
        self.allowed = sorted(allowed)
        super().__init__(
            f"Method {method} not allowed for {path}",
            headers={"Allow": ", ".join(self.allowed)},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["allowed"] = self.allowed
        return data


class AuthenticationError(HTTPError):
    status_code = 401
    default_message = "Unauthenticated."


class SecurityException(HTTPError):
    """CSRF token missing or mismatched."""

    status_code = 403
    default_message = "CSRF token mismatch."


class ValidationError(HTTPError):
    """
    Field level validation failure.

    The JSON shape is {status, message, errors} where errors maps each
    field name to a list of messages.
    """

    status_code = 422
    default_message = "The given data was invalid."

    def __init__(
        self,
        errors: Dict[str, List[str]],
        message: Optional[str] = None,
        old_input: Optional[Dict[str, Any]] = None,
    ):
        self.errors = errors
        self.old_input = dict(old_input or {})
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "error",
            "message": self.message,
            "errors": self.errors,
        }


class RateLimitExceededError(HTTPError):
    status_code = 429
    default_message = "Too Many Attempts."

    def __init__(
        self,
        retry_after: int,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, status_code=status_code, headers=headers)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "retry_after": self.retry_after}


class DeadlineExceededError(HTTPError):
    status_code = 504
    default_message = "Request deadline exceeded."
