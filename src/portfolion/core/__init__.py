"""Socket-level plumbing for the built-in server."""

from .connection import Connection, ConnectionState

__all__ = ["Connection", "ConnectionState"]
