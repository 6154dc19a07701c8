"""
File cache store (the "file" driver).

One JSON file per key under a directory:

    storage/cache/
        3f7a...e1.json   {"key": "portfolion_tasks", "value": [...], "expires_at": 1767225600.0}

File names are the sha1 of the prefixed key. Writes go to a temp file and
are moved into place with os.replace, so a reader never sees half a file.
Values must be JSON serializable.
"""

from typing import Any, Optional, Tuple
import hashlib
import json
import logging
import os
import tempfile

from .base import CacheStore

logger = logging.getLogger(__name__)


class FileStore(CacheStore):
    def __init__(self, path: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.path = path
        os.makedirs(self.path, exist_ok=True)

    def _file_for(self, full_key: str) -> str:
        digest = hashlib.sha1(full_key.encode("utf-8")).hexdigest()
        return os.path.join(self.path, f"{digest}.json")

    def _read(self, full_key: str) -> Optional[Tuple[Any, Optional[float]]]:
        filename = self._file_for(full_key)
        try:
            with open(filename, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Discarding unreadable cache file %s: %s", filename, e)
            self._remove(filename)
            return None

        expires_at = payload.get("expires_at")
        if self.is_expired(expires_at):
            self._remove(filename)
            return None
        return payload.get("value"), expires_at

    def _write(self, full_key: str, value: Any, expires_at: Optional[float]) -> None:
        payload = json.dumps({"key": full_key, "value": value, "expires_at": expires_at})
        fd, tmp_name = tempfile.mkstemp(dir=self.path, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self._file_for(full_key))
        except BaseException:
            self._remove(tmp_name)
            raise

    @staticmethod
    def _remove(filename: str) -> bool:
        try:
            os.remove(filename)
            return True
        except FileNotFoundError:
            return False

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._read(self.prefixed(key))
        return default if entry is None else entry[0]

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        self._write(self.prefixed(key), value, self.expires_at(ttl))
        return True

    def forget(self, key: str) -> bool:
        full_key = self.prefixed(key)
        found = self._read(full_key) is not None
        self._remove(self._file_for(full_key))
        return found

    def increment(self, key: str, by: int = 1) -> int:
        full_key = self.prefixed(key)
        with self._write_lock(full_key):
            entry = self._read(full_key)
            value = by if entry is None else self.to_number(entry[0]) + by
            self._write(full_key, value, None if entry is None else entry[1])
            return value

    def increment_with_expiry(self, key: str, ttl: float, by: int = 1) -> Tuple[int, float]:
        full_key = self.prefixed(key)
        with self._write_lock(full_key):
            entry = self._read(full_key)
            count = by if entry is None else self.to_number(entry[0]) + by
            expires_at = entry[1] if entry is not None and entry[1] is not None else self.clock() + ttl
            self._write(full_key, count, expires_at)
            return count, max(0.0, expires_at - self.clock())

    def ttl(self, key: str) -> Optional[float]:
        entry = self._read(self.prefixed(key))
        if entry is None:
            return None
        if entry[1] is None:
            return 0
        return max(0.0, entry[1] - self.clock())

    def flush(self) -> bool:
        for name in os.listdir(self.path):
            if name.endswith(".json"):
                self._remove(os.path.join(self.path, name))
        return True
