"""
=============================================================================
AUTHENTICATION MIDDLEWARE
=============================================================================

Resolves the current user and attaches it to request.state["user"]:

    Authorization: Bearer <token>   →  token_resolver(token)
    session["user_id"]              →  user_resolver(user_id)

Both resolvers are plain callables returning a user or None, so any
storage can sit behind them.

With `required=True` (the default) a guest never reaches the handler:

    expects JSON  →  401 {"error": "Unauthenticated.", ...}
    otherwise     →  302 to login_path

=============================================================================
"""

from typing import Any, Callable, Optional
import logging

from ..errors import AuthenticationError
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, redirect, unauthorized
from .base import Middleware, NextHandler

logger = logging.getLogger(__name__)

Resolver = Callable[[Any], Optional[Any]]


class AuthMiddleware(Middleware):
    def __init__(
        self,
        token_resolver: Optional[Resolver] = None,
        user_resolver: Optional[Resolver] = None,
        login_path: str = "/login",
        required: bool = True,
    ):
        self.token_resolver = token_resolver
        self.user_resolver = user_resolver
        self.login_path = login_path
        self.required = required

    @property
    def name(self) -> str:
        return "auth"

    def handle(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        user = self.resolve(request)
        request.state["user"] = user

        if user is None and self.required:
            logger.info("Unauthenticated request: %s %s", request.method, request.path)
            if request.expects_json() or request.get_header("authorization"):
                return unauthorized(AuthenticationError.default_message)
            return redirect(self.login_path)
        return next(request)

    def resolve(self, request: HTTPRequest) -> Optional[Any]:
        token = self.bearer_token(request)
        if token and self.token_resolver is not None:
            user = self.token_resolver(token)
            if user is not None:
                return user

        session = request.session
        if session is not None and self.user_resolver is not None:
            user_id = session.get("user_id")
            if user_id is not None:
                return self.user_resolver(user_id)
        return None

    @staticmethod
    def bearer_token(request: HTTPRequest) -> Optional[str]:
        header = request.get_header("authorization")
        scheme, _, token = header.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
        return None
