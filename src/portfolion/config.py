"""
=============================================================================
CONFIGURATION
=============================================================================

Two pieces:

    Config        layered, dotted-key configuration for the whole framework
    ServerConfig  typed settings for the HTTP server, read from Config

=============================================================================
LAYERS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Environment variables                                          │
    │      └── PORTFOLION__SECURITY__CORS__MAX_AGE=600                    │
    │      └── APP_ENV=testing, CACHE_DRIVER=redis, HTTP_PORT=3000        │
    │                                                                      │
    │   2. .env file in the base directory (never overrides 1)            │
    │                                                                      │
    │   3. Environment overrides                                          │
    │      └── config/environments/<app.env>.json                         │
    │                                                                      │
    │   4. Config files, one per top-level section                        │
    │      └── config/cache.json  →  cache.*                              │
    │                                                                      │
    │   5. Built-in defaults (DEFAULTS below)                             │
    └─────────────────────────────────────────────────────────────────────┘

Layers are deep-merged: a file that sets security.cors.max_age leaves the
rest of security.cors alone.

Environment values are decoded as JSON when they parse ("60" → 60,
"false" → False, '["a","b"]' → list); anything else stays a string.

=============================================================================
ACCESS
=============================================================================

    config.get("security.cors.allowed_origins", [])
    config.set("app.debug", True)
    config.has("cache.stores.redis")
    config["api.rate_limiting.enabled"]

=============================================================================
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
import copy
import json
import logging
import os
import threading

from dotenv import dotenv_values

from .errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "PORTFOLION__"

# Conventional variable names mapped onto config keys
ENV_ALIASES = {
    "APP_NAME": "app.name",
    "APP_ENV": "app.env",
    "APP_DEBUG": "app.debug",
    "APP_KEY": "app.key",
    "LOG_LEVEL": "logging.level",
    "LOG_FORMAT": "logging.format",
    "CACHE_DRIVER": "cache.default",
    "CACHE_PREFIX": "cache.prefix",
    "REDIS_URL": "cache.stores.redis.url",
    "API_RATE_LIMITING": "api.rate_limiting.enabled",
    "HTTP_HOST": "server.host",
    "HTTP_PORT": "server.port",
    "HTTP_WORKERS": "server.max_workers",
    "HTTP_TIMEOUT": "server.timeout",
    "DB_DATABASE": "database.path",
}

DEFAULTS: Dict[str, Any] = {
    "app": {
        "name": "Portfolion",
        "env": "production",
        "debug": False,
        "key": "",
    },
    "logging": {
        "level": "INFO",
        "format": "text",
        "skip_paths": ["/health"],
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8080,
        "backlog": 128,
        "buffer_size": 8192,
        "timeout": 30.0,
        "keep_alive": True,
        "keep_alive_timeout": 5.0,
        "max_request_size": 10 * 1024 * 1024,
        "max_workers": 16,
        "request_deadline": 30.0,
        "server_name": "Portfolion/1.0",
    },
    "cache": {
        "default": "array",
        "prefix": "portfolion_",
        "ttl": 3600,
        "stores": {
            "array": {"driver": "array"},
            "file": {"driver": "file", "path": "storage/framework/cache"},
            "null": {"driver": "null"},
            "redis": {
                "driver": "redis",
                "url": "redis://localhost:6379/0",
                "prefix": "portfolion_cache:",
            },
        },
    },
    "session": {
        "cookie": "portfolion_session",
        "lifetime": 120,
        "secure": False,
        "http_only": True,
        "same_site": "Lax",
        "store": None,
    },
    "security": {
        "cors": {
            "enabled": True,
            "allowed_origins": ["*"],
            "allowed_methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            "allowed_headers": ["Content-Type", "X-Requested-With", "Authorization", "X-API-Key", "X-CSRF-TOKEN"],
            "expose_headers": ["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
            "max_age": 86400,
            "supports_credentials": False,
        },
        "csrf": {
            "enabled": True,
            "except": ["api/*", "webhook/*"],
        },
    },
    "api": {
        "prefix": "api",
        "rate_limiting": {
            "enabled": True,
            "limiters": {
                "default": {"max_attempts": 60, "decay_minutes": 1, "by": "ip"},
                "auth": {"max_attempts": 30, "decay_minutes": 1, "by": "user"},
                "api_key": {"max_attempts": 300, "decay_minutes": 1, "by": "api_key"},
                "strict": {
                    "max_attempts": 5,
                    "decay_minutes": 1,
                    "by": "ip",
                    "include_method": True,
                    "include_route": True,
                    "response_message": "Too many attempts. Please try again later.",
                },
            },
        },
    },
    "queue": {
        "default": "sync",
        "retry_after": 60,
        "max_attempts": 3,
    },
    "database": {
        "path": ":memory:",
    },
}


def deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge override into base in place; nested dicts merge, everything else replaces."""
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def coerce_env_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        lowered = raw.strip().lower()
        if lowered in ("true", "yes", "on"):
            return True
        if lowered in ("false", "no", "off"):
            return False
        return raw


class Config:
    """Dotted-key view over nested configuration data."""

    def __init__(self, data: Optional[Mapping[str, Any]] = None, defaults: bool = True):
        self._data: Dict[str, Any] = copy.deepcopy(DEFAULTS) if defaults else {}
        if data:
            deep_merge(self._data, data)
        self._lock = threading.RLock()

    # =========================================================================
    # LOADING
    # =========================================================================

    @classmethod
    def load(
        cls,
        base_dir: Optional[str] = None,
        env: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "Config":
        """
        Assemble every layer.

        Args:
            base_dir: Project root holding config/ and .env (optional)
            env: Environment name; defaults to APP_ENV, then app.env
            environ: Variables to read instead of os.environ
            overrides: Applied last, above everything (handy in tests)
        """
        variables: Dict[str, str] = {}
        if base_dir:
            dotenv_path = os.path.join(base_dir, ".env")
            if os.path.isfile(dotenv_path):
                variables.update({k: v for k, v in dotenv_values(dotenv_path).items() if v is not None})
        variables.update(os.environ if environ is None else environ)

        config = cls()
        if base_dir:
            config._load_directory(os.path.join(base_dir, "config"))

        env_name = env or variables.get("APP_ENV") or config.get("app.env")
        config.set("app.env", env_name)

        if base_dir:
            env_file = os.path.join(base_dir, "config", "environments", f"{env_name}.json")
            if os.path.isfile(env_file):
                config.merge(cls._read_json(env_file))
                logger.debug("Applied %s overrides from %s", env_name, env_file)

        config.apply_environment(variables)
        if env:
            config.set("app.env", env)
        if overrides:
            config.merge(overrides)
        return config

    def _load_directory(self, config_dir: str) -> None:
        if not os.path.isdir(config_dir):
            return
        for filename in sorted(os.listdir(config_dir)):
            if not filename.endswith(".json"):
                continue
            section = filename[: -len(".json")]
            data = self._read_json(os.path.join(config_dir, filename))
            self.merge({section: data})
            logger.debug("Loaded config section %s", section)

    @staticmethod
    def _read_json(path: str) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read config file {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
        return data

    def apply_environment(self, environ: Mapping[str, str]) -> None:
        for name, raw in environ.items():
            if name in ENV_ALIASES:
                self.set(ENV_ALIASES[name], coerce_env_value(raw))
            elif name.startswith(ENV_PREFIX) and len(name) > len(ENV_PREFIX):
                key = ".".join(part.lower() for part in name[len(ENV_PREFIX):].split("__"))
                self.set(key, coerce_env_value(raw))

    # =========================================================================
    # ACCESS
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        parts = key.split(".")
        with self._lock:
            node = self._data
            for part in parts[:-1]:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            node[parts[-1]] = value

    def has(self, key: str) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def merge(self, data: Mapping[str, Any]) -> None:
        with self._lock:
            deep_merge(self._data, data)

    def section(self, key: str) -> Dict[str, Any]:
        """A copy of a nested section, {} when missing."""
        value = self.get(key, {})
        return copy.deepcopy(value) if isinstance(value, dict) else {}

    def all(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    @property
    def environment(self) -> str:
        return str(self.get("app.env", "production"))

    @property
    def debug(self) -> bool:
        return bool(self.get("app.debug", False))

    def is_environment(self, *names: str) -> bool:
        return self.environment in names

    def __getitem__(self, key: str) -> Any:
        sentinel = object()
        value = self.get(key, sentinel)
        if value is sentinel:
            raise KeyError(key)
        return value

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __repr__(self) -> str:
        return f"Config(env={self.environment!r})"


@dataclass
class ServerConfig:
    """
    Typed settings for HTTPServer.

    NETWORK   host, port, backlog, buffer_size, timeout
    HTTP      keep_alive, keep_alive_timeout, max_request_size
    WORKERS   max_workers
    REQUESTS  request_deadline (seconds, None disables it)
    """

    host: str = "127.0.0.1"
    port: int = 8080
    backlog: int = 128
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024
    max_workers: int = 16
    request_deadline: Optional[float] = 30.0
    server_name: str = "Portfolion/1.0"

    @classmethod
    def from_config(cls, config: Config) -> "ServerConfig":
        section = config.section("server")
        known = {name: section[name] for name in cls.__dataclass_fields__ if name in section}
        server = cls(**known)
        server.port = int(server.port)
        server.max_workers = int(server.max_workers)
        return server

    def validate(self) -> None:
        """Fail fast on nonsense values, before any socket is opened."""
        if not 0 <= self.port < 65536:
            raise ConfigError(f"Invalid port: {self.port}. Must be 0-65535.")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be >= 1")
        if self.buffer_size < 1024:
            raise ConfigError("buffer_size must be >= 1024")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError("timeout must be > 0")
        if self.request_deadline is not None and self.request_deadline <= 0:
            raise ConfigError("request_deadline must be > 0")
