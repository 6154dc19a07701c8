"""
Unit tests for ErrorHandlerMiddleware.
"""

import pytest

from portfolion.errors import (
    HTTPError,
    MethodNotAllowedError,
    RateLimitExceededError,
    RouteNotFoundError,
    ValidationError,
)
from portfolion.http.request import HTTPParseError, HTTPRequest
from portfolion.http.response import ok
from portfolion.middleware import ErrorHandlerMiddleware


def make_request(json: bool = False) -> HTTPRequest:
    headers = {"Accept": "application/json"} if json else {"Accept": "text/html"}
    return HTTPRequest(method="GET", path="/tasks", headers=headers)


def raising(error):
    def handler(request):
        raise error
    return handler


class TestHTTPErrors:
    """HTTPError subclasses map onto their own status."""

    def test_passthrough(self):
        response = ErrorHandlerMiddleware().handle(make_request(), lambda r: ok("fine"))
        assert response.status == 200

    def test_not_found_json(self):
        response = ErrorHandlerMiddleware().handle(make_request(json=True), raising(RouteNotFoundError("GET", "/x")))

        assert response.status == 404
        assert response.json() == {"error": "No route for GET /x", "message": "No route for GET /x", "code": 404}

    def test_not_found_html(self):
        response = ErrorHandlerMiddleware().handle(make_request(), raising(RouteNotFoundError("GET", "/x")))

        assert response.status == 404
        assert response.headers["Content-Type"].startswith("text/html")
        assert "<h1>404 Not Found</h1>" in response.text

    def test_error_headers_copied(self):
        error = MethodNotAllowedError("DELETE", "/tasks", ["POST", "GET"])
        response = ErrorHandlerMiddleware().handle(make_request(json=True), raising(error))

        assert response.status == 405
        assert response.headers["Allow"] == "GET, POST"
        assert response.json()["allowed"] == ["GET", "POST"]

    def test_rate_limit_error_shape(self):
        error = RateLimitExceededError(30, headers={"Retry-After": "30"})
        response = ErrorHandlerMiddleware().handle(make_request(json=True), raising(error))

        assert response.status == 429
        assert response.headers["Retry-After"] == "30"
        assert response.json() == {"error": "Too Many Attempts.", "retry_after": 30}

    def test_validation_json(self):
        error = ValidationError({"title": ["The title field is required."]})
        response = ErrorHandlerMiddleware().handle(make_request(json=True), raising(error))

        assert response.status == 422
        assert response.json() == {
            "status": "error",
            "message": "The given data was invalid.",
            "errors": {"title": ["The title field is required."]},
        }

    def test_validation_html_lists_errors(self):
        error = ValidationError({"title": ["The <title> field is required."]})
        response = ErrorHandlerMiddleware().handle(make_request(), raising(error))

        assert response.status == 422
        assert "<li>title: The &lt;title&gt; field is required.</li>" in response.text

    def test_parse_error_becomes_400(self):
        response = ErrorHandlerMiddleware().handle(make_request(json=True), raising(HTTPParseError("Invalid JSON body")))

        assert response.status == 400
        assert response.json()["message"] == "Invalid JSON body"

    def test_custom_status(self):
        response = ErrorHandlerMiddleware().handle(make_request(json=True), raising(HTTPError("Gone", status_code=410)))
        assert response.status == 410


class TestUnhandledExceptions:
    """Anything else becomes a 500."""

    def test_production_hides_details(self, caplog):
        response = ErrorHandlerMiddleware(debug=False).handle(make_request(json=True), raising(KeyError("secret")))

        assert response.status == 500
        assert response.json() == {"error": "Server Error", "message": "Server Error", "code": 500}
        assert "Unhandled error" in caplog.text

    def test_debug_json_includes_trace(self):
        response = ErrorHandlerMiddleware(debug=True).handle(make_request(json=True), raising(ValueError("bad value")))
        payload = response.json()

        assert payload["exception"] == "ValueError"
        assert payload["message"] == "bad value"
        assert any("ValueError" in line for line in payload["trace"])

    def test_debug_html_escapes_trace(self):
        response = ErrorHandlerMiddleware(debug=True).handle(make_request(), raising(ValueError("<script>")))

        assert response.status == 500
        assert "<script>" not in response.text
        assert "ValueError: &lt;script&gt;" in response.text

    def test_production_html(self):
        response = ErrorHandlerMiddleware().handle(make_request(), raising(ValueError("<internal>")))

        assert response.status == 500
        assert "&lt;internal&gt;" not in response.text
        assert "Server Error" in response.text

    def test_broken_renderer_falls_back_to_text(self, monkeypatch):
        middleware = ErrorHandlerMiddleware()

        def explode(request, error):
            raise RuntimeError("renderer broke")

        monkeypatch.setattr(middleware, "render_exception", explode)
        response = middleware.handle(make_request(), raising(ValueError("x")))

        assert response.status == 500
        assert response.body == b"Internal Server Error"

    @pytest.mark.parametrize("error", [KeyboardInterrupt(), SystemExit(1)])
    def test_base_exceptions_propagate(self, error):
        with pytest.raises(type(error)):
            ErrorHandlerMiddleware().handle(make_request(), raising(error))
