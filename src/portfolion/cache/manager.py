"""
Builds cache stores from the `cache` config section.

    cache:
        default: "array"
        prefix:  "portfolion_"
        stores:
            array: {driver: "array"}
            file:  {driver: "file", path: "storage/cache", ttl: 3600}
            redis: {driver: "redis", url: "redis://localhost:6379/0", prefix: "portfolion_cache:"}
            null:  {driver: "null"}

Stores are created on first use and reused afterwards. Attribute access on
the manager is forwarded to the default store, so `cache.get("k")` works.
"""

from typing import Any, Callable, Dict, Mapping, Optional
import logging
import threading
import time

from ..errors import ConfigError
from .base import CacheStore, Clock
from .file import FileStore
from .memory import MemoryStore
from .null import NullStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[[Mapping[str, Any], Dict[str, Any]], CacheStore]


def _redis_factory(settings: Mapping[str, Any], common: Dict[str, Any]) -> CacheStore:
    # Imported here so the redis client is only touched when configured
    from .redis import RedisStore
    return RedisStore(url=settings.get("url", "redis://localhost:6379/0"), **common)


DRIVERS: Dict[str, StoreFactory] = {
    "array": lambda settings, common: MemoryStore(**common),
    "memory": lambda settings, common: MemoryStore(**common),
    "file": lambda settings, common: FileStore(settings.get("path", "storage/cache"), **common),
    "null": lambda settings, common: NullStore(**common),
    "redis": _redis_factory,
}


class CacheManager:
    def __init__(self, config: Optional[Mapping[str, Any]] = None, clock: Clock = time.time):
        """
        Args:
            config: The `cache` section (a plain mapping)
            clock: Time source handed to every store
        """
        self.config: Dict[str, Any] = dict(config or {})
        self.clock = clock
        self._stores: Dict[str, CacheStore] = {}
        self._drivers: Dict[str, StoreFactory] = dict(DRIVERS)
        self._lock = threading.Lock()

    @property
    def default_store(self) -> str:
        return self.config.get("default", "array")

    def extend(self, driver: str, factory: StoreFactory) -> None:
        """Register a custom driver factory(settings, common_kwargs)."""
        self._drivers[driver] = factory

    def store(self, name: Optional[str] = None) -> CacheStore:
        name = name or self.default_store
        with self._lock:
            if name not in self._stores:
                self._stores[name] = self._create(name)
            return self._stores[name]

    def set_store(self, name: str, store: CacheStore) -> None:
        """Install a ready-made store under name (used by tests)."""
        with self._lock:
            self._stores[name] = store

    def _create(self, name: str) -> CacheStore:
        stores = self.config.get("stores", {})
        settings = stores.get(name)
        if settings is None:
            if name in self._drivers:
                settings = {"driver": name}
            else:
                raise ConfigError(f"Cache store [{name}] is not defined")

        driver = settings.get("driver", name)
        factory = self._drivers.get(driver)
        if factory is None:
            raise ConfigError(f"Cache driver [{driver}] is not supported")

        common = {
            "prefix": settings.get("prefix", self.config.get("prefix", "")),
            "default_ttl": settings.get("ttl", self.config.get("ttl")),
            "clock": self.clock,
        }
        logger.debug("Creating cache store %s (driver=%s)", name, driver)
        return factory(settings, common)

    def __getattr__(self, attribute: str) -> Any:
        if attribute.startswith("_"):
            raise AttributeError(attribute)
        return getattr(self.store(), attribute)
