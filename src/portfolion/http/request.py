"""
=============================================================================
HTTP REQUEST
=============================================================================

The request object that travels through the middleware chain, and the
parser that builds it from raw HTTP/1.1 bytes.

=============================================================================
WHERE INPUT COMES FROM
=============================================================================

    POST /tasks/7?page=2 HTTP/1.1
    Content-Type: application/x-www-form-urlencoded
    X-CSRF-TOKEN: 9f2c...

    _method=PUT&title=Buy+milk&status=pending
    ─────┬───── ────────────┬────────────────
         │                  │
         │                  └── body params   request.input("title")
         └── method override    request.effective_method == "PUT"

    query params   ← ?page=2              request.get_query("page")
    route params   ← /tasks/{id}          request.route_params["id"]
    headers        ← case-insensitive     request.get_header("x-csrf-token")

input() looks in the body first and falls back to the query string, the
same precedence form frameworks use.

=============================================================================
METHOD OVERRIDE
=============================================================================

HTML forms can only send GET and POST. A POST carrying a `_method` body
field (or an X-HTTP-Method-Override header) of PUT, PATCH or DELETE is
routed as that method. The raw `method` attribute is never rewritten so
logs still show what came over the wire.

=============================================================================
"""

from dataclasses import dataclass, field
from http.cookies import CookieError, SimpleCookie
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse, unquote
import json
import re

from .headers import Headers

OVERRIDABLE_METHODS = frozenset({"PUT", "PATCH", "DELETE"})


class HTTPParseError(Exception):
    """
    Raised when a request cannot be parsed.

    Carries the status code the server should answer with:
    400 for malformed input, 413 for oversized bodies, 505 for
    unsupported HTTP versions.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A single HTTP request.

    Created once per call, passed by reference through every middleware
    and finally to the handler. Middleware communicate through `state`
    (and the session/user shortcuts built on it), never through globals.
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Headers = field(default_factory=Headers)
    query_params: Dict[str, List[str]] = field(default_factory=dict)
    body: bytes = b""

    # Filled in by the router after a match
    route_params: Dict[str, str] = field(default_factory=dict)
    route: Optional[Any] = None

    client_address: tuple = ("", 0)

    # Per-request scratch space shared by middleware
    state: Dict[str, Any] = field(default_factory=dict)

    _body_json: Optional[Any] = field(default=None, repr=False)
    _body_params: Optional[Dict[str, Any]] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.headers, Headers):
            self.headers = Headers(self.headers)
        self.method = self.method.upper()

    # =========================================================================
    # HEADERS
    # =========================================================================

    def get_header(self, name: str, default: str = "") -> str:
        value = self.headers.get(name)
        return default if value is None else value

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters, lowercased."""
        ct = self.get_header("content-type")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        try:
            return int(self.get_header("content-length", "0"))
        except ValueError:
            return 0

    @property
    def host(self) -> str:
        return self.get_header("host")

    @property
    def user_agent(self) -> str:
        return self.get_header("user-agent")

    @property
    def client_ip(self) -> str:
        return self.client_address[0] or "unknown"

    @property
    def cookies(self) -> Dict[str, str]:
        jar: SimpleCookie = SimpleCookie()
        for header in self.headers.get_all("cookie"):
            try:
                jar.load(header)
            except CookieError:
                continue
        return {name: morsel.value for name, morsel in jar.items()}

    def cookie(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.cookies.get(name, default)

    @property
    def is_keep_alive(self) -> bool:
        """
        HTTP/1.1 keeps the connection open unless told otherwise;
        HTTP/1.0 closes it unless asked to keep it.
        """
        connection = self.get_header("connection").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    # =========================================================================
    # CONTENT NEGOTIATION
    # =========================================================================

    @property
    def is_json(self) -> bool:
        return self.content_type == "application/json"

    @property
    def is_ajax(self) -> bool:
        return self.get_header("x-requested-with").lower() == "xmlhttprequest"

    def wants_json(self) -> bool:
        return "application/json" in self.get_header("accept")

    def expects_json(self) -> bool:
        """True when the client should get JSON errors instead of HTML."""
        return self.is_json or self.is_ajax or self.wants_json()

    # =========================================================================
    # BODY
    # =========================================================================

    @property
    def json(self) -> Any:
        """
        The body decoded as JSON (cached after the first access).

        Raises:
            HTTPParseError: If the body is not valid JSON.
        """
        if self._body_json is None and self.body:
            try:
                self._body_json = json.loads(self.body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise HTTPParseError(f"Invalid JSON body: {e}")
        return self._body_json

    @property
    def body_params(self) -> Dict[str, Any]:
        """
        Body fields as a flat dict.

        JSON objects are used as-is; form-urlencoded bodies keep the last
        value of each repeated field. Any other content type yields {}.
        """
        if self._body_params is None:
            params: Dict[str, Any] = {}
            if self.is_json:
                data = self.json
                if isinstance(data, dict):
                    params = dict(data)
            elif self.content_type == "application/x-www-form-urlencoded" and self.body:
                parsed = parse_qs(self.body.decode("utf-8", errors="replace"), keep_blank_values=True)
                params = {key: values[-1] for key, values in parsed.items()}
            self._body_params = params
        return self._body_params

    def input(self, name: str, default: Any = None) -> Any:
        """Look a field up in the body, then the query string."""
        body = self.body_params
        if name in body:
            return body[name]
        return self.get_query(name, default)

    def all(self) -> Dict[str, Any]:
        """Query and body fields merged; body wins on conflicts."""
        data: Dict[str, Any] = {key: values[-1] for key, values in self.query_params.items() if values}
        data.update(self.body_params)
        return data

    def only(self, *names: str) -> Dict[str, Any]:
        data = self.all()
        return {name: data.get(name) for name in names}

    # =========================================================================
    # QUERY STRING
    # =========================================================================

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name)
        return values[0] if values else default

    def get_query_list(self, name: str) -> List[str]:
        return self.query_params.get(name, [])

    # =========================================================================
    # ROUTING HELPERS
    # =========================================================================

    @property
    def effective_method(self) -> str:
        """The method used for routing, honouring `_method` on POST."""
        if self.method != "POST":
            return self.method
        override = self.get_header("x-http-method-override")
        if not override:
            try:
                override = self.body_params.get("_method") or ""
            except HTTPParseError:
                override = ""
        override = str(override).upper()
        return override if override in OVERRIDABLE_METHODS else self.method

    def param(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.route_params.get(name, default)

    # =========================================================================
    # MIDDLEWARE ATTACHMENTS
    # =========================================================================

    @property
    def session(self) -> Any:
        """The Session object attached by SessionMiddleware, if any."""
        return self.state.get("session")

    @property
    def user(self) -> Any:
        """The authenticated user attached by AuthMiddleware, if any."""
        return self.state.get("user")

    @property
    def deadline(self) -> Any:
        return self.state.get("deadline")


class RequestParser:
    """
    Parses raw HTTP/1.1 request bytes into HTTPRequest objects.

    One parser instance is shared by every worker; it holds no
    per-request state.
    """

    # METHOD SP REQUEST-URI SP HTTP-VERSION
    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")

    # field-name ":" OWS field-value OWS
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    VALID_METHODS = frozenset({
        "GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS",
    })

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(self, data: bytes, client_address: tuple = ("", 0)) -> HTTPRequest:
        """
        Parse one complete request.

        Raises:
            HTTPParseError: If the request is malformed or too large.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        header_section = data[:header_end].decode("utf-8", errors="replace")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, path, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length") or 0)
        except ValueError:
            raise HTTPParseError("Invalid Content-Length header")
        if content_length < 0:
            raise HTTPParseError(f"Invalid Content-Length header: {content_length}")
        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:content_length],
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> tuple:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, uri, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        parsed = urlparse(uri)
        path = unquote(parsed.path) or "/"
        query_params = parse_qs(parsed.query, keep_blank_values=True)

        # Path traversal
        if ".." in path.split("/"):
            raise HTTPParseError("Invalid path: contains ..")

        return method, path, query_params, version

    def _parse_headers(self, lines: List[str]) -> Headers:
        """
        Repeated headers stay separate entries in the multimap rather
        than being folded into one comma-joined value.
        """
        headers = Headers()
        for line in lines:
            if not line or line[0] in (" ", "\t"):
                # obs-fold continuation lines are rejected by RFC 7230; skip
                continue
            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue
            name, value = match.groups()
            headers.add(name.strip(), value.strip())
        return headers


def parse_request(
    data: bytes,
    client_address: tuple = ("", 0),
    max_size: int = 10 * 1024 * 1024,
) -> HTTPRequest:
    """Parse a request with a throwaway RequestParser."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
