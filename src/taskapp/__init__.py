"""Sample task manager built on Portfolion."""

from .main import create_app

__all__ = ["create_app"]
