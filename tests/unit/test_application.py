"""
Unit tests for Application wiring and the in-process TestClient.
"""

import pytest

from portfolion.application import Application
from portfolion.errors import RoutingError
from portfolion.http.response import ResponseBuilder, text
from portfolion.middleware.base import function_middleware
from portfolion.middleware.csrf import CsrfMiddleware
from portfolion.middleware.deadline import DeadlineMiddleware
from portfolion.middleware.logging import LoggingMiddleware
from portfolion.middleware.session import SessionMiddleware
from portfolion.testing import TestClient


def ok(request):
    return text("ok")


class TestApplication:
    """Route registration, global middleware and dispatch."""

    def test_handle_routes_request(self):
        app = Application()
        app.get("/hello/{name}", lambda request: text(f"hi {request.route_params['name']}"))

        assert TestClient(app).get("/hello/ada").text == "hi ada"

    def test_unhandled_exception_becomes_500(self):
        app = Application()

        @app.get("/boom")
        def boom(request):
            raise RuntimeError("kaput")

        response = TestClient(app).get("/boom", headers={"Accept": "application/json"})

        assert response.status == 500
        assert response.json()["message"] == "Server Error"

    def test_global_middleware_wraps_routes(self):
        app = Application()
        app.get("/", ok)

        @function_middleware
        def stamp(request, next):
            response = next(request)
            response.set_header("X-Stamp", "1")
            return response

        app.use(stamp)
        assert TestClient(app).get("/").headers["X-Stamp"] == "1"

    def test_routing_errors_reach_the_error_handler(self):
        app = Application()
        seen = []

        @function_middleware
        def record(request, next):
            response = next(request)
            seen.append(response.status)
            return response

        app.use(record)
        response = TestClient(app).get("/missing")

        assert response.status == 404
        assert seen == []

    def test_use_after_first_request_raises(self):
        app = Application()
        app.get("/", ok)
        TestClient(app).get("/")

        with pytest.raises(RuntimeError):
            app.use(LoggingMiddleware())

    def test_routes_frozen_after_first_request(self):
        app = Application()
        app.get("/", ok)
        TestClient(app).get("/")

        with pytest.raises(RuntimeError):
            app.get("/late", ok)

    def test_use_defaults_order(self):
        app = Application().use_defaults()
        names = [type(middleware) for middleware in app.pipeline]

        assert names[0] is LoggingMiddleware
        assert names[2] is SessionMiddleware
        assert names[-1] is DeadlineMiddleware

    def test_deadline_can_be_disabled(self, config):
        config.set("server.request_deadline", 0)
        app = Application(config).use_defaults()

        assert not any(isinstance(middleware, DeadlineMiddleware) for middleware in app.pipeline)

    def test_url_for(self):
        app = Application()
        app.get("/tasks/{id:int}", ok, name="tasks.show")

        assert app.url_for("tasks.show", id=7) == "/tasks/7"


class TestMiddlewareAliases:
    """Route lists can name framework middleware."""

    def test_csrf_alias(self):
        app = Application()
        route = app.post("/form", ok, middleware=["csrf"])

        assert isinstance(route.middleware[0], CsrfMiddleware)

    def test_throttle_aliases(self):
        app = Application()

        default = app.get("/a", ok, middleware=["throttle"])
        strict = app.get("/b", ok, middleware=["throttle:strict"])

        assert default.middleware[0].name == "throttle:default"
        assert strict.middleware[0].name == "throttle:strict"
        assert strict.middleware[0].limiter.max_attempts == 5

    def test_auth_alias_is_app_auth(self):
        app = Application()
        route = app.get("/me", ok, middleware=["auth"])

        assert route.middleware[0] is app.auth

    def test_unknown_alias(self):
        with pytest.raises(RoutingError):
            Application().get("/x", ok, middleware=["nope"])

    def test_custom_alias(self):
        app = Application()

        @function_middleware
        def teapot(request, next):
            return ResponseBuilder().status(418).text("short and stout").build()

        app.alias("teapot", teapot)
        app.get("/pot", ok, middleware=["teapot"])

        assert TestClient(app).get("/pot").status == 418


class TestTestClient:
    """Cookie jar behaviour."""

    @pytest.fixture
    def cookie_app(self) -> Application:
        app = Application()

        @app.get("/set")
        def set_cookie(request):
            return text("set").set_cookie("flavour", "oat", max_age=60)

        @app.get("/clear")
        def clear_cookie(request):
            return text("cleared").set_cookie("flavour", "", max_age=0)

        @app.get("/echo")
        def echo(request):
            return text(request.headers.get("Cookie", ""))

        return app

    def test_cookies_sent_back(self, cookie_app):
        client = TestClient(cookie_app)
        client.get("/set")

        assert client.cookies == {"flavour": "oat"}
        assert client.get("/echo").text == "flavour=oat"

    def test_max_age_zero_removes_cookie(self, cookie_app):
        client = TestClient(cookie_app)
        client.get("/set")
        client.get("/clear")

        assert client.cookies == {}
        assert client.get("/echo").text == ""

    def test_follow_requires_redirect(self, cookie_app):
        client = TestClient(cookie_app)

        with pytest.raises(ValueError):
            client.follow(client.get("/echo"))

    def test_query_argument(self):
        app = Application()
        app.get("/q", lambda request: text(request.get_query("page")))

        assert TestClient(app).get("/q", query={"page": 3}).text == "3"
