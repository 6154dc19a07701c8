"""
=============================================================================
SESSION MIDDLEWARE
=============================================================================

Cookie-identified sessions whose data lives in the cache:

    Cookie: portfolion_session=<id>    ──►   cache["session:<id>"] = {...}

Lifecycle per request:

    1. read the id from the cookie; unknown or malformed ids get a fresh
       session with a new id (ids are never taken from the client)
    2. request.session is available to everything downstream
    3. on the way out the data is written back with TTL = lifetime
       and the cookie is (re)sent

=============================================================================
FLASH DATA
=============================================================================

Flash values survive exactly one more request, which is what a
redirect-after-POST needs:

    POST /tasks     session.flash("success", "Task created")  → 302 /tasks
    GET  /tasks     session.get_flash("success")              → "Task created"
    GET  /tasks     session.get_flash("success")              → None

Old form input and validation errors ride along the same way
(flash_input / old).

=============================================================================
"""

from typing import Any, Dict, Mapping, Optional
import logging
import re
import secrets

from ..cache.base import CacheStore
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse
from .base import Middleware, NextHandler

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{32,128}$")
CSRF_TOKEN_KEY = "_csrf_token"


class Session:
    """Key/value data for one browser session."""

    def __init__(self, session_id: str, data: Optional[Dict[str, Any]] = None, is_new: bool = False):
        self.id = session_id
        self.is_new = is_new
        data = dict(data or {})
        # Flashes written by the previous request are readable now and then gone
        self._flashed: Dict[str, Any] = data.pop("_flash", {}) or {}
        self._next_flash: Dict[str, Any] = {}
        self._data = data
        self._previous_id: Optional[str] = None
        self.invalidated = False

    @staticmethod
    def generate_id() -> str:
        return secrets.token_urlsafe(32)

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._data:
            return self._data[key]
        return self._flashed.get(key, default)

    def put(self, key: str, value: Any) -> None:
        self._data[key] = value

    def has(self, key: str) -> bool:
        return key in self._data or key in self._flashed

    def forget(self, key: str) -> None:
        self._data.pop(key, None)

    def pull(self, key: str, default: Any = None) -> Any:
        value = self.get(key, default)
        self.forget(key)
        return value

    def all(self) -> Dict[str, Any]:
        data = dict(self._flashed)
        data.update(self._data)
        return data

    # -------------------------------------------------------------------------
    # Flash
    # -------------------------------------------------------------------------

    def flash(self, key: str, value: Any) -> None:
        self._next_flash[key] = value

    def get_flash(self, key: str, default: Any = None) -> Any:
        return self._flashed.get(key, default)

    def reflash(self) -> None:
        """Keep this request's flashes for one more request."""
        merged = dict(self._flashed)
        merged.update(self._next_flash)
        self._next_flash = merged

    def flash_input(self, data: Mapping[str, Any]) -> None:
        safe = {key: value for key, value in data.items() if not key.startswith("_")}
        self.flash("_old_input", safe)

    def old(self, key: str, default: Any = None) -> Any:
        return (self.get_flash("_old_input") or {}).get(key, default)

    def errors(self) -> Dict[str, Any]:
        return self.get_flash("errors") or {}

    # -------------------------------------------------------------------------
    # Security
    # -------------------------------------------------------------------------

    def token(self) -> str:
        """The CSRF token for this session, created on first use."""
        token = self._data.get(CSRF_TOKEN_KEY)
        if not token:
            token = secrets.token_hex(20)
            self._data[CSRF_TOKEN_KEY] = token
        return token

    def regenerate_token(self) -> str:
        self._data.pop(CSRF_TOKEN_KEY, None)
        return self.token()

    def regenerate(self) -> None:
        """New id, same data (call after login)."""
        self._previous_id = self.id
        self.id = self.generate_id()
        self.is_new = True

    def invalidate(self) -> None:
        """New id, no data (call on logout)."""
        self._data.clear()
        self._flashed.clear()
        self._next_flash.clear()
        self.regenerate()
        self.invalidated = True

    def to_payload(self) -> Dict[str, Any]:
        payload = dict(self._data)
        if self._next_flash:
            payload["_flash"] = dict(self._next_flash)
        return payload


class SessionMiddleware(Middleware):
    """
    Args:
        cache: Store that holds session payloads
        cookie: Cookie name
        lifetime: Minutes of inactivity before a session expires
    """

    def __init__(
        self,
        cache: CacheStore,
        cookie: str = "portfolion_session",
        lifetime: int = 120,
        secure: bool = False,
        http_only: bool = True,
        same_site: str = "Lax",
    ):
        self.cache = cache
        self.cookie = cookie
        self.lifetime = lifetime
        self.secure = secure
        self.http_only = http_only
        self.same_site = same_site

    @classmethod
    def from_config(cls, cache: CacheStore, settings: Mapping[str, Any]) -> "SessionMiddleware":
        return cls(
            cache,
            cookie=settings.get("cookie", "portfolion_session"),
            lifetime=int(settings.get("lifetime", 120)),
            secure=bool(settings.get("secure", False)),
            http_only=bool(settings.get("http_only", True)),
            same_site=settings.get("same_site", "Lax"),
        )

    @staticmethod
    def cache_key(session_id: str) -> str:
        return f"session:{session_id}"

    def load(self, request: HTTPRequest) -> Session:
        session_id = request.cookie(self.cookie)
        if session_id and SESSION_ID_PATTERN.match(session_id):
            data = self.cache.get(self.cache_key(session_id))
            if isinstance(data, dict):
                return Session(session_id, data)
        return Session(Session.generate_id(), is_new=True)

    def save(self, session: Session) -> None:
        if session._previous_id:
            self.cache.forget(self.cache_key(session._previous_id))
        self.cache.put(self.cache_key(session.id), session.to_payload(), self.lifetime * 60)

    def handle(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        session = self.load(request)
        request.state["session"] = session
        try:
            response = next(request)
        finally:
            self.save(session)

        response.set_cookie(
            self.cookie,
            session.id,
            max_age=self.lifetime * 60,
            http_only=self.http_only,
            same_site=self.same_site,
            secure=self.secure,
        )
        return response
