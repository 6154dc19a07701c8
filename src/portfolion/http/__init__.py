"""
HTTP layer: headers, request parsing, responses and routing.
"""

from http import HTTPStatus

from .headers import Headers
from .request import HTTPRequest, HTTPParseError, RequestParser, parse_request
from .response import (
    HTTPResponse,
    ResponseBuilder,
    make_response,
    json_response,
    html,
    text,
    ok,
    created,
    no_content,
    redirect,
    error_response,
    bad_request,
    unauthorized,
    forbidden,
    not_found,
    method_not_allowed,
    unprocessable,
    too_many_requests,
    internal_error,
    gateway_timeout,
)
from .router import Route, RouteMatch, Router

__all__ = [
    "HTTPStatus",
    "Headers",
    "HTTPRequest",
    "HTTPParseError",
    "RequestParser",
    "parse_request",
    "HTTPResponse",
    "ResponseBuilder",
    "make_response",
    "json_response",
    "html",
    "text",
    "ok",
    "created",
    "no_content",
    "redirect",
    "error_response",
    "bad_request",
    "unauthorized",
    "forbidden",
    "not_found",
    "method_not_allowed",
    "unprocessable",
    "too_many_requests",
    "internal_error",
    "gateway_timeout",
    "Route",
    "RouteMatch",
    "Router",
]
