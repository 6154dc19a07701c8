"""
=============================================================================
IN-PROCESS TEST CLIENT
=============================================================================

Drives Application.handle() directly, no sockets involved:

    client = TestClient(app)
    response = client.post("/tasks", data={"title": "Buy milk", ...})
    assert response.status == 302

    client.get("/api/tasks", headers={"Accept": "application/json"})
    client.post("/api/tasks", json={"title": "x", "status": "pending"})

Cookies set by responses are stored and sent back on later requests, so
sessions (and with them CSRF tokens and flash messages) work across
calls just as they do in a browser.

=============================================================================
"""

from http.cookies import CookieError, SimpleCookie
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qs, urlencode, urlsplit
import json as jsonlib

from .http.headers import Headers
from .http.request import HTTPRequest
from .http.response import HTTPResponse


class TestClient:
    __test__ = False  # not a pytest test class

    def __init__(self, app: Any, client_address: Tuple[str, int] = ("127.0.0.1", 50000)):
        self.app = app
        self.client_address = client_address
        self.cookies: Dict[str, str] = {}

    def request(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        data: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        body: bytes = b"",
        query: Optional[Mapping[str, Any]] = None,
    ) -> HTTPResponse:
        request_headers = Headers(headers or {})
        request_headers.setdefault("Host", "testserver")

        if json is not None:
            body = jsonlib.dumps(json).encode("utf-8")
            request_headers.setdefault("Content-Type", "application/json")
        elif data is not None:
            body = urlencode(data, doseq=True).encode("utf-8")
            request_headers.setdefault("Content-Type", "application/x-www-form-urlencoded")
        if body:
            request_headers.set("Content-Length", str(len(body)))

        if self.cookies and "cookie" not in request_headers:
            request_headers.set("Cookie", "; ".join(f"{name}={value}" for name, value in self.cookies.items()))

        url = urlsplit(path)
        query_params = parse_qs(url.query, keep_blank_values=True)
        if query:
            query_params.update(parse_qs(urlencode(query, doseq=True), keep_blank_values=True))

        request = HTTPRequest(
            method=method,
            path=url.path or "/",
            headers=request_headers,
            query_params=query_params,
            body=body,
            client_address=self.client_address,
        )
        response = self.app.handle(request)
        self._store_cookies(response)
        return response

    def _store_cookies(self, response: HTTPResponse) -> None:
        for header in response.headers.get_all("set-cookie"):
            jar: SimpleCookie = SimpleCookie()
            try:
                jar.load(header)
            except CookieError:
                continue
            for name, morsel in jar.items():
                if morsel["max-age"] in ("0", 0):
                    self.cookies.pop(name, None)
                else:
                    self.cookies[name] = morsel.value

    def get(self, path: str, **kwargs: Any) -> HTTPResponse:
        return self.request("GET", path, **kwargs)

    def head(self, path: str, **kwargs: Any) -> HTTPResponse:
        return self.request("HEAD", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> HTTPResponse:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> HTTPResponse:
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> HTTPResponse:
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> HTTPResponse:
        return self.request("DELETE", path, **kwargs)

    def options(self, path: str, **kwargs: Any) -> HTTPResponse:
        return self.request("OPTIONS", path, **kwargs)

    def follow(self, response: HTTPResponse, **kwargs: Any) -> HTTPResponse:
        """GET the Location of a redirect."""
        location = response.get_header("Location")
        if not location:
            raise ValueError("Response is not a redirect")
        return self.get(location, **kwargs)
