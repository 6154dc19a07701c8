"""
Cache abstraction: one contract, several drivers.

    from portfolion.cache import MemoryStore

    cache = MemoryStore(prefix="app_")
    cache.put("greeting", "hello", ttl=60)
    cache.remember("tasks", 30, load_tasks)

The redis driver lives in portfolion.cache.redis and is imported on demand
by CacheManager.
"""

from .base import CacheStore
from .file import FileStore
from .manager import CacheManager
from .memory import MemoryStore
from .null import NullStore

__all__ = [
    "CacheStore",
    "CacheManager",
    "FileStore",
    "MemoryStore",
    "NullStore",
]
