"""
=============================================================================
CORS MIDDLEWARE
=============================================================================

Cross-Origin Resource Sharing, driven by the `security.cors` section:

    allowed_origins       ["*"] or exact origins ("https://app.example.com")
    allowed_methods       sent on preflight as Access-Control-Allow-Methods
    allowed_headers       sent on preflight as Access-Control-Allow-Headers
    expose_headers        sent on real responses as Access-Control-Expose-Headers
    max_age               preflight cache lifetime in seconds (0 = omit)
    supports_credentials  adds Access-Control-Allow-Credentials: true

=============================================================================
FLOW
=============================================================================

    OPTIONS + Origin (preflight)
        └── 204 No Content, handler never runs
              Access-Control-Allow-Origin: <origin>      (only if allowed)
              Access-Control-Allow-Methods: GET, POST, ...
              Access-Control-Allow-Headers: Content-Type, ...
              Access-Control-Max-Age: 86400

    anything else
        └── next(request), then CORS headers added to its response

An allowed origin is always echoed back verbatim, even when the list is
["*"], so credentialed requests keep working. A disallowed origin gets no
Access-Control-Allow-Origin header at all and the browser blocks the call.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, no_content
from .base import Middleware, NextHandler

logger = logging.getLogger(__name__)


@dataclass
class CORSConfig:
    enabled: bool = True
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    allowed_methods: List[str] = field(default_factory=lambda: ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
    allowed_headers: List[str] = field(default_factory=lambda: ["Content-Type", "Authorization", "X-Requested-With"])
    expose_headers: List[str] = field(default_factory=list)
    max_age: int = 86400
    supports_credentials: bool = False

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> "CORSConfig":
        known = cls.__dataclass_fields__
        return cls(**{key: value for key, value in settings.items() if key in known})

    def allows(self, origin: str) -> bool:
        return bool(origin) and ("*" in self.allowed_origins or origin in self.allowed_origins)


class CORSMiddleware(Middleware):
    def __init__(self, config: Optional[CORSConfig] = None):
        self.config = config or CORSConfig()

    def handle(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if not self.config.enabled:
            return next(request)

        origin = request.get_header("origin")

        if self._is_preflight(request):
            return self._preflight(origin)

        response = next(request)
        self._add_cors_headers(response, origin)
        if self.config.allows(origin) and self.config.expose_headers:
            response.set_header("Access-Control-Expose-Headers", ", ".join(self.config.expose_headers))
        return response

    @staticmethod
    def _is_preflight(request: HTTPRequest) -> bool:
        return request.method == "OPTIONS" and (
            "origin" in request.headers or "access-control-request-method" in request.headers
        )

    def _preflight(self, origin: str) -> HTTPResponse:
        response = no_content()
        self._add_cors_headers(response, origin)

        if self.config.allowed_methods:
            methods = ", ".join(method.upper() for method in self.config.allowed_methods)
            response.set_header("Access-Control-Allow-Methods", methods)
        if self.config.allowed_headers:
            response.set_header("Access-Control-Allow-Headers", ", ".join(self.config.allowed_headers))
        if self.config.max_age and self.config.max_age > 0:
            response.set_header("Access-Control-Max-Age", int(self.config.max_age))

        if origin and not self.config.allows(origin):
            logger.info("CORS preflight from disallowed origin %s", origin)
        return response

    def _add_cors_headers(self, response: HTTPResponse, origin: str) -> None:
        if not self.config.allows(origin):
            return

        response.set_header("Access-Control-Allow-Origin", origin)
        if self.config.supports_credentials:
            response.set_header("Access-Control-Allow-Credentials", "true")

        # The header value depends on Origin, so shared caches must key on it
        vary = response.get_header("Vary")
        if not vary:
            response.set_header("Vary", "Origin")
        elif "origin" not in [part.strip().lower() for part in vary.split(",")]:
            response.set_header("Vary", f"{vary}, Origin")
