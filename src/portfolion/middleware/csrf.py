"""
=============================================================================
CSRF MIDDLEWARE
=============================================================================

State-changing requests (POST, PUT, PATCH, DELETE) must echo the session's
CSRF token back, taken from the first of:

    _token          form field
    X-CSRF-TOKEN    header
    X-XSRF-TOKEN    header (the XSRF-TOKEN cookie, as JavaScript clients send it)

Paths matching an `except` pattern skip the check (API clients use other
credentials):

    security.csrf.except = ["api/*", "webhook/*"]

A mismatch never reaches the handler:

    expects JSON  →  403 {"error": "CSRF token mismatch.", ...}
    otherwise     →  302 back to Referer (or "/") with an error flash

Needs SessionMiddleware further out in the chain.

=============================================================================
"""

from fnmatch import fnmatchcase
from typing import Iterable, Optional
import hmac
import logging

from ..errors import SecurityException
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, json_response, redirect
from .base import Middleware, NextHandler

logger = logging.getLogger(__name__)

PROTECTED_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
TOKEN_HEADERS = ("x-csrf-token", "x-xsrf-token")


class CsrfMiddleware(Middleware):
    """
    Args:
        except_patterns: Glob patterns of paths exempt from the check
        enabled: Master switch
        set_cookie: Also send the token as an XSRF-TOKEN cookie
    """

    def __init__(
        self,
        except_patterns: Optional[Iterable[str]] = None,
        enabled: bool = True,
        set_cookie: bool = True,
    ):
        if except_patterns is None:
            except_patterns = ["api/*", "webhook/*"]
        self.except_patterns = list(except_patterns)
        self.enabled = enabled
        self.set_cookie = set_cookie

    @property
    def name(self) -> str:
        return "csrf"

    def handle(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if not self.enabled:
            return next(request)

        session = request.session
        if session is None:
            raise RuntimeError("CsrfMiddleware requires SessionMiddleware")

        try:
            if request.effective_method in PROTECTED_METHODS and not self.is_exempt(request.path):
                self.verify(request)
        except SecurityException as e:
            logger.warning("CSRF check failed: %s %s from %s", request.method, request.path, request.client_ip)
            return self._reject(request, e)

        response = next(request)
        if self.set_cookie:
            response.set_cookie("XSRF-TOKEN", session.token(), http_only=False)
        return response

    def is_exempt(self, path: str) -> bool:
        stripped = path.lstrip("/")
        return any(
            fnmatchcase(stripped, pattern.lstrip("/")) or fnmatchcase(path, pattern)
            for pattern in self.except_patterns
        )

    def verify(self, request: HTTPRequest) -> None:
        expected = request.session.token()
        supplied = self.token_from(request)
        # compare_digest rejects non-ASCII str, so compare bytes
        if not supplied or not hmac.compare_digest(str(supplied).encode("utf-8"), expected.encode("utf-8")):
            raise SecurityException()

    @staticmethod
    def token_from(request: HTTPRequest) -> Optional[str]:
        token = request.body_params.get("_token")
        if token:
            return token
        for header in TOKEN_HEADERS:
            value = request.get_header(header)
            if value:
                return value
        return None

    @staticmethod
    def _reject(request: HTTPRequest, error: SecurityException) -> HTTPResponse:
        if request.expects_json():
            return json_response(error.to_dict(), status=error.status_code)
        request.session.flash("error", error.message)
        return redirect(request.get_header("referer") or "/")
