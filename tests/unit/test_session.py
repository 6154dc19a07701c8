"""
Unit tests for sessions, CSRF protection and authentication.
"""

import pytest

from portfolion.http.request import HTTPRequest
from portfolion.http.response import ok
from portfolion.middleware import AuthMiddleware, CsrfMiddleware, Session, SessionMiddleware


def make_request(method: str = "GET", path: str = "/", **kwargs) -> HTTPRequest:
    return HTTPRequest(method=method, path=path, client_address=("127.0.0.1", 4000), **kwargs)


def cookie_value(response, name: str) -> str:
    for header in response.headers.get_all("Set-Cookie"):
        key, _, rest = header.partition("=")
        if key == name:
            return rest.split(";")[0]
    raise AssertionError(f"no {name} cookie")


class TestSession:
    """Tests for the Session object."""

    def test_put_get_forget(self):
        session = Session("abc")
        session.put("user_id", 7)

        assert session.get("user_id") == 7
        assert session.has("user_id")
        assert session.pull("user_id") == 7
        assert session.get("user_id", "gone") == "gone"

    def test_flash_is_readable_next_request_only(self):
        session = Session("abc")
        session.flash("success", "Saved")

        assert session.get_flash("success") is None

        next_session = Session("abc", session.to_payload())
        assert next_session.get_flash("success") == "Saved"

        third = Session("abc", next_session.to_payload())
        assert third.get_flash("success") is None

    def test_reflash(self):
        first = Session("abc")
        first.flash("status", "kept")

        second = Session("abc", first.to_payload())
        second.reflash()

        third = Session("abc", second.to_payload())
        assert third.get_flash("status") == "kept"

    def test_old_input_skips_private_fields(self):
        session = Session("abc")
        session.flash_input({"title": "Draft", "_token": "secret", "_method": "PUT"})

        restored = Session("abc", session.to_payload())
        assert restored.old("title") == "Draft"
        assert restored.old("_token") is None

    def test_errors(self):
        session = Session("abc")
        session.flash("errors", {"title": ["The title field is required."]})

        assert Session("abc", session.to_payload()).errors() == {"title": ["The title field is required."]}
        assert Session("abc").errors() == {}

    def test_token_is_stable_until_regenerated(self):
        session = Session("abc")
        token = session.token()

        assert len(token) == 40
        assert session.token() == token
        assert session.regenerate_token() != token

    def test_regenerate_keeps_data(self):
        session = Session("abc")
        session.put("k", "v")
        session.regenerate()

        assert session.id != "abc"
        assert session.get("k") == "v"

    def test_invalidate_clears_data(self):
        session = Session("abc")
        session.put("k", "v")
        session.invalidate()

        assert session.id != "abc"
        assert session.all() == {}
        assert session.invalidated


class TestSessionMiddleware:
    """Tests for SessionMiddleware."""

    def test_new_session_sets_cookie(self, store):
        middleware = SessionMiddleware(store)
        request = make_request()

        response = middleware.handle(request, lambda r: ok("x"))

        session_id = cookie_value(response, "portfolion_session")
        assert session_id == request.session.id
        assert request.session.is_new
        assert store.get(SessionMiddleware.cache_key(session_id)) == {}

    def test_data_survives_between_requests(self, store):
        middleware = SessionMiddleware(store)

        def write(request):
            request.session.put("name", "Ada")
            request.session.flash("success", "Hello")
            return ok("x")

        first = middleware.handle(make_request(), write)
        session_id = cookie_value(first, "portfolion_session")

        seen = {}

        def read(request):
            seen["name"] = request.session.get("name")
            seen["flash"] = request.session.get_flash("success")
            return ok("x")

        middleware.handle(make_request(headers={"Cookie": f"portfolion_session={session_id}"}), read)
        assert seen == {"name": "Ada", "flash": "Hello"}

    def test_unknown_or_malformed_id_gets_fresh_session(self, store):
        middleware = SessionMiddleware(store)

        for cookie in ("portfolion_session=" + "a" * 40, "portfolion_session=../../etc"):
            request = make_request(headers={"Cookie": cookie})
            middleware.handle(request, lambda r: ok("x"))
            assert request.session.is_new
            assert request.session.id not in cookie

    def test_session_expires_with_lifetime(self, store, clock):
        middleware = SessionMiddleware(store, lifetime=1)
        response = middleware.handle(make_request(), lambda r: ok("x"))
        session_id = cookie_value(response, "portfolion_session")

        clock.advance(61)
        assert store.get(SessionMiddleware.cache_key(session_id)) is None

    def test_saved_even_when_handler_raises(self, store):
        middleware = SessionMiddleware(store)
        request = make_request()

        def failing(r):
            r.session.put("k", "v")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            middleware.handle(request, failing)
        assert store.get(SessionMiddleware.cache_key(request.session.id)) == {"k": "v"}

    def test_regenerate_forgets_old_payload(self, store):
        middleware = SessionMiddleware(store)
        old_id = cookie_value(middleware.handle(make_request(), lambda r: ok("x")), "portfolion_session")

        def login(request):
            request.session.regenerate()
            return ok("x")

        request = make_request(headers={"Cookie": f"portfolion_session={old_id}"})
        middleware.handle(request, login)

        assert store.get(SessionMiddleware.cache_key(old_id)) is None
        assert store.has(SessionMiddleware.cache_key(request.session.id))

    def test_from_config(self, store):
        middleware = SessionMiddleware.from_config(store, {"cookie": "sid", "lifetime": 5, "secure": True})
        response = middleware.handle(make_request(), lambda r: ok("x"))

        header = response.headers.get_all("Set-Cookie")[0]
        assert header.startswith("sid=")
        assert "Max-Age=300" in header
        assert "Secure" in header


@pytest.fixture
def protected(store):
    """Session + CSRF around a handler that records whether it ran."""
    calls = []

    def handler(request):
        calls.append(request.path)
        return ok("done")

    session = SessionMiddleware(store)
    csrf = CsrfMiddleware()

    def run(request):
        return session.handle(request, lambda r: csrf.handle(r, handler))

    run.calls = calls
    return run


def form_post(path: str = "/tasks", body: bytes = b"", **headers) -> HTTPRequest:
    headers.setdefault("Content-Type", "application/x-www-form-urlencoded")
    return make_request("POST", path, headers=headers, body=body)


class TestCsrfMiddleware:
    """Tests for CSRF verification."""

    def test_safe_methods_pass_and_get_token_cookie(self, protected):
        response = protected(make_request("GET", "/tasks"))

        assert response.status == 200
        assert cookie_value(response, "XSRF-TOKEN")
        assert protected.calls == ["/tasks"]

    def test_missing_token_redirects_back_with_flash(self, protected, store):
        request = form_post(body=b"title=x", Referer="/tasks/create")
        response = protected(request)

        assert response.status == 302
        assert response.headers["Location"] == "/tasks/create"
        assert protected.calls == []
        saved = store.get(SessionMiddleware.cache_key(request.session.id))
        assert saved["_flash"]["error"] == "CSRF token mismatch."

    def test_missing_token_json_is_403(self, protected):
        request = make_request("DELETE", "/tasks/1", headers={"Accept": "application/json"})
        response = protected(request)

        assert response.status == 403
        assert response.json()["error"] == "CSRF token mismatch."

    def test_valid_form_token(self, protected):
        first = make_request("GET", "/tasks")
        response = protected(first)
        session_cookie = f"portfolion_session={cookie_value(response, 'portfolion_session')}"
        token = cookie_value(response, "XSRF-TOKEN")

        request = form_post(body=f"title=x&_token={token}".encode(), Cookie=session_cookie)
        assert protected(request).status == 200
        assert protected.calls == ["/tasks", "/tasks"]

    @pytest.mark.parametrize("header", ["X-CSRF-TOKEN", "X-XSRF-TOKEN"])
    def test_valid_header_token(self, protected, header):
        response = protected(make_request("GET", "/tasks"))
        session_cookie = f"portfolion_session={cookie_value(response, 'portfolion_session')}"
        token = cookie_value(response, "XSRF-TOKEN")

        request = make_request("PUT", "/tasks/1", headers={"Cookie": session_cookie, header: token})
        assert protected(request).status == 200

    def test_wrong_token_rejected(self, protected):
        response = protected(make_request("GET", "/tasks"))
        session_cookie = f"portfolion_session={cookie_value(response, 'portfolion_session')}"

        request = form_post(body=b"_token=forged", Cookie=session_cookie)
        assert protected(request).status == 302

    def test_non_ascii_form_token_rejected(self, protected):
        response = protected(make_request("GET", "/tasks"))
        session_cookie = f"portfolion_session={cookie_value(response, 'portfolion_session')}"

        request = form_post(body=b"_token=caf%C3%A9", Cookie=session_cookie, Referer="/tasks/create")
        response = protected(request)

        assert response.status == 302
        assert response.headers["Location"] == "/tasks/create"
        assert protected.calls == ["/tasks"]

    @pytest.mark.parametrize("header", ["X-CSRF-TOKEN", "X-XSRF-TOKEN"])
    def test_non_ascii_header_token_rejected(self, protected, header):
        request = make_request("POST", "/tasks", headers={header: "éé", "Accept": "application/json"})
        response = protected(request)

        assert response.status == 403
        assert response.json()["error"] == "CSRF token mismatch."

    def test_method_override_is_checked(self, protected):
        request = make_request("POST", "/tasks/1", headers={"X-HTTP-Method-Override": "DELETE"})
        assert protected(request).status == 302

    def test_exempt_paths(self, protected):
        assert protected(form_post("/api/tasks")).status == 200
        assert protected(form_post("/webhook/github")).status == 200

    def test_is_exempt_patterns(self):
        csrf = CsrfMiddleware(except_patterns=["/hooks/*"])

        assert csrf.is_exempt("/hooks/stripe")
        assert not csrf.is_exempt("/api/tasks")

    def test_disabled(self):
        csrf = CsrfMiddleware(enabled=False)
        assert csrf.handle(form_post(), lambda r: ok("x")).status == 200

    def test_requires_session(self):
        with pytest.raises(RuntimeError):
            CsrfMiddleware().handle(form_post(), lambda r: ok("x"))


USERS = {1: {"id": 1, "name": "Ada"}}
TOKENS = {"secret-token": USERS[1]}


class TestAuthMiddleware:
    """Tests for AuthMiddleware."""

    @pytest.fixture
    def auth(self):
        return AuthMiddleware(token_resolver=TOKENS.get, user_resolver=USERS.get)

    def test_bearer_token(self, auth):
        request = make_request(headers={"Authorization": "Bearer secret-token"})
        response = auth.handle(request, lambda r: ok({"user": r.user["name"]}))

        assert response.json() == {"user": "Ada"}

    def test_session_user(self, auth):
        request = make_request()
        request.state["session"] = Session("abc", {"user_id": 1})

        auth.handle(request, lambda r: ok("x"))
        assert request.user == USERS[1]

    def test_guest_html_redirects_to_login(self, auth):
        response = auth.handle(make_request(), lambda r: ok("x"))

        assert response.status == 302
        assert response.headers["Location"] == "/login"

    def test_guest_json_is_401(self, auth):
        response = auth.handle(make_request(headers={"Accept": "application/json"}), lambda r: ok("x"))

        assert response.status == 401
        assert response.json()["error"] == "Unauthenticated."

    def test_bad_token_is_401(self, auth):
        request = make_request(headers={"Authorization": "Bearer nope"})
        assert auth.handle(request, lambda r: ok("x")).status == 401

    def test_optional_auth_lets_guests_through(self):
        auth = AuthMiddleware(required=False)
        request = make_request()

        assert auth.handle(request, lambda r: ok("x")).status == 200
        assert request.user is None

    @pytest.mark.parametrize("header, expected", [
        ("Bearer abc", "abc"),
        ("bearer  abc ", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        ("", None),
    ])
    def test_bearer_token_parsing(self, header, expected):
        request = make_request(headers={"Authorization": header} if header else {})
        assert AuthMiddleware.bearer_token(request) == expected
