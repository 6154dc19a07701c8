"""Request/response middleware and the pipeline that composes them."""

from .base import FunctionMiddleware, Middleware, MiddlewarePipeline, NextHandler, function_middleware
from .auth import AuthMiddleware
from .cors import CORSConfig, CORSMiddleware
from .csrf import CsrfMiddleware
from .deadline import Deadline, DeadlineMiddleware
from .errors import ErrorHandlerMiddleware
from .logging import LoggingMiddleware, RequestLog
from .rate_limit import RateLimitMiddleware
from .session import Session, SessionMiddleware

__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "FunctionMiddleware",
    "function_middleware",
    "AuthMiddleware",
    "CORSConfig",
    "CORSMiddleware",
    "CsrfMiddleware",
    "Deadline",
    "DeadlineMiddleware",
    "ErrorHandlerMiddleware",
    "LoggingMiddleware",
    "RequestLog",
    "RateLimitMiddleware",
    "Session",
    "SessionMiddleware",
]
