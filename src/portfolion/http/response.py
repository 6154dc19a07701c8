"""
=============================================================================
HTTP RESPONSE
=============================================================================

The mutable response object that flows back out through the middleware
chain, a fluent builder for it, and one-line helpers for common cases.

=============================================================================
LIFECYCLE
=============================================================================

    handler                 middleware (reverse order)           server
    ───────                 ──────────────────────────           ──────
    return json_response(   response.set_header(                 to_bytes()
        {"id": 1})              "X-RateLimit-Limit", "60")       sendall()
                            response.headers.add(
                                "Set-Cookie", "sid=...")

Each layer may change status, headers or body on the way out. Headers
keep insertion order and may repeat (see Headers).

=============================================================================
BUILDER
=============================================================================

    response = (ResponseBuilder()
        .status(HTTPStatus.CREATED)
        .json({"id": 7})
        .header("Location", "/api/tasks/7")
        .build())

Handlers can also return plain values and let the router normalize them:

    dict / list   →  200 application/json
    str           →  200 text/html; charset=utf-8
    None          →  204 No Content

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from http import HTTPStatus
from typing import Any, Dict, Optional, Union
import json

from .headers import Headers

JSON_CONTENT_TYPE = "application/json"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


def status_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Unknown"


@dataclass
class HTTPResponse:
    """A response under construction."""

    status: int = HTTPStatus.OK
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    version: str = "HTTP/1.1"

    def __post_init__(self) -> None:
        if not isinstance(self.headers, Headers):
            self.headers = Headers(self.headers)
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        self.status = int(self.status)

    @property
    def status_line(self) -> str:
        return f"{self.version} {self.status} {status_phrase(self.status)}"

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("Content-Type")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8")) if self.body else None

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)

    def set_header(self, name: str, value: Any) -> "HTTPResponse":
        self.headers.set(name, str(value))
        return self

    def add_header(self, name: str, value: Any) -> "HTTPResponse":
        self.headers.add(name, str(value))
        return self

    def set_content_type(self, content_type: str) -> "HTTPResponse":
        return self.set_header("Content-Type", content_type)

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def set_cookie(
        self,
        name: str,
        value: str,
        max_age: Optional[int] = None,
        path: str = "/",
        http_only: bool = True,
        same_site: str = "Lax",
        secure: bool = False,
    ) -> "HTTPResponse":
        """Append a Set-Cookie header (one line per cookie)."""
        parts = [f"{name}={value}", f"Path={path}"]
        if max_age is not None:
            parts.append(f"Max-Age={max_age}")
        if http_only:
            parts.append("HttpOnly")
        if same_site:
            parts.append(f"SameSite={same_site}")
        if secure:
            parts.append("Secure")
        return self.add_header("Set-Cookie", "; ".join(parts))

    @property
    def is_redirect(self) -> bool:
        return 300 <= self.status < 400 and "Location" in self.headers

    def to_bytes(self, server_name: str = "Portfolion/1.0") -> bytes:
        """
        Serialize for the socket.

        Content-Length, Date and Server are added when missing; the
        response object itself is left untouched.
        """
        headers = self.headers.copy()
        headers.setdefault("Content-Length", str(len(self.body)))
        headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
        headers.setdefault("Server", server_name)

        lines = [self.status_line]
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        lines.append("")
        return "\r\n".join(lines).encode("utf-8") + b"\r\n" + self.body


class ResponseBuilder:
    """Fluent builder for HTTPResponse. Every method but build() returns self."""

    def __init__(self) -> None:
        self._status: int = HTTPStatus.OK
        self._headers = Headers()
        self._body: bytes = b""

    def status(self, status: int) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: Any) -> "ResponseBuilder":
        self._headers.set(name, str(value))
        return self

    def headers(self, headers: Dict[str, Any]) -> "ResponseBuilder":
        for name, value in headers.items():
            self.header(name, value)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str, content_type: str = TEXT_CONTENT_TYPE) -> "ResponseBuilder":
        self._body = text.encode("utf-8")
        return self.content_type(content_type)

    def html(self, html: str) -> "ResponseBuilder":
        self._body = html.encode("utf-8")
        return self.content_type(HTML_CONTENT_TYPE)

    def json(self, data: Any, pretty: bool = False) -> "ResponseBuilder":
        indent = 2 if pretty else None
        self._body = json.dumps(data, indent=indent, ensure_ascii=False, default=str).encode("utf-8")
        return self.content_type(JSON_CONTENT_TYPE)

    def redirect(self, location: str, permanent: bool = False) -> "ResponseBuilder":
        self._status = HTTPStatus.MOVED_PERMANENTLY if permanent else HTTPStatus.FOUND
        return self.header("Location", location)

    def no_cache(self) -> "ResponseBuilder":
        self._headers.set("Cache-Control", "no-store, no-cache, must-revalidate")
        self._headers.set("Pragma", "no-cache")
        return self

    def cache(self, max_age: int = 3600) -> "ResponseBuilder":
        return self.header("Cache-Control", f"public, max-age={max_age}")

    def build(self) -> HTTPResponse:
        return HTTPResponse(status=self._status, headers=self._headers.copy(), body=self._body)


def format_http_date(dt: datetime) -> str:
    """RFC 7231 IMF-fixdate, e.g. 'Thu, 01 Jan 2026 12:00:00 GMT'."""
    return format_datetime(dt.astimezone(timezone.utc), usegmt=True)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def make_response(value: Any) -> HTTPResponse:
    """Normalize a handler's return value into an HTTPResponse."""
    if isinstance(value, HTTPResponse):
        return value
    if value is None:
        return no_content()
    if isinstance(value, (dict, list)):
        return json_response(value)
    if isinstance(value, str):
        return html(value)
    if isinstance(value, bytes):
        return ResponseBuilder().body(value).content_type("application/octet-stream").build()
    raise TypeError(f"Handler returned unsupported type {type(value).__name__}")


def json_response(data: Any, status: int = HTTPStatus.OK, headers: Optional[Dict[str, Any]] = None) -> HTTPResponse:
    return ResponseBuilder().status(status).json(data).headers(headers or {}).build()


def html(content: str, status: int = HTTPStatus.OK) -> HTTPResponse:
    return ResponseBuilder().status(status).html(content).build()


def text(content: str, status: int = HTTPStatus.OK) -> HTTPResponse:
    return ResponseBuilder().status(status).text(content).build()


def ok(body: Union[str, bytes, dict, list] = "") -> HTTPResponse:
    if isinstance(body, (dict, list)):
        return json_response(body)
    if isinstance(body, str):
        return text(body)
    return ResponseBuilder().body(body).build()


def created(body: Any = None, location: Optional[str] = None) -> HTTPResponse:
    builder = ResponseBuilder().status(HTTPStatus.CREATED)
    if body is not None:
        builder.json(body)
    if location:
        builder.header("Location", location)
    return builder.build()


def no_content() -> HTTPResponse:
    return ResponseBuilder().status(HTTPStatus.NO_CONTENT).build()


def redirect(location: str, permanent: bool = False) -> HTTPResponse:
    return ResponseBuilder().redirect(location, permanent).build()


def error_response(status: int, message: str, **extra: Any) -> HTTPResponse:
    """JSON error body in the framework's {error, message, code} shape."""
    payload = {"error": message, "message": message, "code": int(status)}
    payload.update(extra)
    return json_response(payload, status=status)


def bad_request(message: str = "Bad Request") -> HTTPResponse:
    return error_response(HTTPStatus.BAD_REQUEST, message)


def unauthorized(message: str = "Unauthenticated.") -> HTTPResponse:
    response = error_response(HTTPStatus.UNAUTHORIZED, message)
    return response.set_header("WWW-Authenticate", 'Bearer realm="api"')


def forbidden(message: str = "Forbidden") -> HTTPResponse:
    return error_response(HTTPStatus.FORBIDDEN, message)


def not_found(message: str = "Not Found") -> HTTPResponse:
    return error_response(HTTPStatus.NOT_FOUND, message)


def method_not_allowed(allowed: list) -> HTTPResponse:
    response = error_response(HTTPStatus.METHOD_NOT_ALLOWED, "Method Not Allowed")
    return response.set_header("Allow", ", ".join(sorted(allowed)))


def unprocessable(errors: Dict[str, list], message: str = "The given data was invalid.") -> HTTPResponse:
    return json_response(
        {"status": "error", "message": message, "errors": errors},
        status=HTTPStatus.UNPROCESSABLE_ENTITY,
    )


def too_many_requests(retry_after: int, message: str = "Too Many Attempts.", status: int = HTTPStatus.TOO_MANY_REQUESTS) -> HTTPResponse:
    response = json_response({"error": message, "retry_after": retry_after}, status=status)
    return response.set_header("Retry-After", retry_after)


def internal_error(message: str = "Server Error") -> HTTPResponse:
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, message)


def gateway_timeout(message: str = "Request deadline exceeded.") -> HTTPResponse:
    return error_response(HTTPStatus.GATEWAY_TIMEOUT, message)
