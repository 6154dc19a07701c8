"""
=============================================================================
ERROR HANDLER MIDDLEWARE
=============================================================================

The outermost layer. Whatever escapes the rest of the chain is turned
into a response here, so the server never sees an exception.

    HTTPError (404, 405, 401, 422, 429, ...)
        expects JSON  →  error.to_dict() with error.status_code and headers
        otherwise     →  small HTML page with the same status

    ValidationError
        JSON  →  {"status": "error", "message": ..., "errors": {...}}
        HTML  →  422 page listing the field errors (controllers that want
                 redirect-back-with-flash catch it themselves, inside the
                 session layer)

    HTTPParseError (bad JSON body)  →  400

    anything else
        →  500, logged with traceback
           production: generic "Server Error"
           debug:      exception type, message and traceback in the body

=============================================================================
"""

from html import escape
from typing import Any, Dict
import logging
import traceback

from ..errors import HTTPError, ValidationError
from ..http.request import HTTPParseError, HTTPRequest
from ..http.response import HTTPResponse, html, json_response, status_phrase, text
from .base import Middleware, NextHandler

logger = logging.getLogger(__name__)

ERROR_PAGE = """<!DOCTYPE html>
<html>
<head><title>{status} {title}</title></head>
<body>
<h1>{status} {title}</h1>
<p>{message}</p>
{details}
</body>
</html>
"""


class ErrorHandlerMiddleware(Middleware):
    def __init__(self, debug: bool = False):
        self.debug = debug

    def handle(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        try:
            return next(request)
        except HTTPError as e:
            return self._safely(self.render_http_error, request, e)
        except HTTPParseError as e:
            error = HTTPError(e.message, status_code=e.status_code)
            return self._safely(self.render_http_error, request, error)
        except Exception as e:
            logger.exception("Unhandled error: %s %s", request.method, request.path)
            return self._safely(self.render_exception, request, e)

    def _safely(self, render, request: HTTPRequest, error: Exception) -> HTTPResponse:
        try:
            return render(request, error)
        except Exception:
            logger.exception("Error while rendering error response")
            return text("Internal Server Error", status=500)

    def render_http_error(self, request: HTTPRequest, error: HTTPError) -> HTTPResponse:
        if error.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, error.message)
        else:
            logger.info("%s %s -> %d %s", request.method, request.path, error.status_code, error.message)

        if request.expects_json():
            response = json_response(error.to_dict(), status=error.status_code)
        elif isinstance(error, ValidationError):
            response = self._page(error.status_code, error.message, self._error_list(error.errors))
        else:
            response = self._page(error.status_code, error.message)
        for name, value in error.headers.items():
            response.set_header(name, value)
        return response

    def render_exception(self, request: HTTPRequest, error: Exception) -> HTTPResponse:
        if request.expects_json():
            payload: Dict[str, Any] = {"error": "Server Error", "message": "Server Error", "code": 500}
            if self.debug:
                payload["exception"] = type(error).__name__
                payload["message"] = str(error)
                payload["trace"] = traceback.format_exception(type(error), error, error.__traceback__)
            return json_response(payload, status=500)

        if self.debug:
            trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            return self._page(500, f"{type(error).__name__}: {error}", f"<pre>{escape(trace)}</pre>")
        return self._page(500, "Server Error")

    @staticmethod
    def _page(status: int, message: str, details: str = "") -> HTTPResponse:
        body = ERROR_PAGE.format(
            status=status,
            title=escape(status_phrase(status)),
            message=escape(message),
            details=details,
        )
        return html(body, status=status)

    @staticmethod
    def _error_list(errors: Dict[str, Any]) -> str:
        items = "".join(
            f"<li>{escape(field)}: {escape(message)}</li>"
            for field, messages in errors.items()
            for message in messages
        )
        return f"<ul>{items}</ul>"
