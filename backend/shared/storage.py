"""
Key-value persistence backends.

Samples, catalog metadata and model artifacts are all stored as opaque
byte blobs under string keys. Backends report running out of space with
StorageQuotaError so callers can tell quota problems from other failures.
"""

import errno
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

import redis

from shared.config import Settings, settings as default_settings
from shared.redis_client import RedisKeys, get_redis_client

logger = logging.getLogger(__name__)


class StorageBackendError(Exception):
    """Backend could not complete a read or write."""


class StorageQuotaError(StorageBackendError):
    """Backend refused a write because it is out of space."""


class KeyValueStore(ABC):
    """Minimal blob store interface shared by every backend."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the blob stored under key, or None."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Store blob under key, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key. Returns True if it existed."""

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """List stored keys starting with prefix."""

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def size_of(self, key: str) -> int:
        value = self.get(key)
        return len(value) if value is not None else 0


class MemoryKeyValueStore(KeyValueStore):
    """
    Dict-backed store with an optional total byte quota.

    Used for tests and ephemeral sessions.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._data: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        if self.quota_bytes is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(value) > self.quota_bytes:
                raise StorageQuotaError(
                    f"Writing {len(value)} bytes to '{key}' exceeds quota "
                    f"({used}/{self.quota_bytes} bytes used)"
                )
        self._data[key] = bytes(value)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class FileKeyValueStore(KeyValueStore):
    """
    One file per key inside a directory.

    Keys are URL-quoted into file names. Writes go to a temporary file
    first and are moved into place, so a failed write never leaves a
    truncated blob behind.
    """

    SUFFIX = ".blob"

    def __init__(self, directory: str, quota_bytes: Optional[int] = None):
        """
        Initialize file store.

        Args:
            directory: Directory holding the blobs (created if missing)
            quota_bytes: Optional total byte quota across all blobs
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        return self.directory / (quote(key, safe="") + self.SUFFIX)

    def _used_bytes(self, exclude: Optional[Path] = None) -> int:
        return sum(
            p.stat().st_size
            for p in self.directory.glob(f"*{self.SUFFIX}")
            if p != exclude
        )

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageBackendError(f"Failed to read {path}: {e}") from e

    def set(self, key: str, value: bytes) -> None:
        path = self._path(key)

        if self.quota_bytes is not None:
            used = self._used_bytes(exclude=path)
            if used + len(value) > self.quota_bytes:
                raise StorageQuotaError(
                    f"Writing {len(value)} bytes to '{key}' exceeds quota "
                    f"({used}/{self.quota_bytes} bytes used)"
                )

        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            if e.errno == errno.ENOSPC:
                raise StorageQuotaError(f"No space left writing {path}") from e
            raise StorageBackendError(f"Failed to write {path}: {e}") from e

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageBackendError(f"Failed to delete {path}: {e}") from e

    def keys(self, prefix: str = "") -> List[str]:
        found = (
            unquote(p.name[: -len(self.SUFFIX)])
            for p in self.directory.glob(f"*{self.SUFFIX}")
        )
        return sorted(k for k in found if k.startswith(prefix))


class RedisKeyValueStore(KeyValueStore):
    """
    Redis-backed store.

    Redis refuses writes with an OOM error once maxmemory is reached;
    that is reported as StorageQuotaError.
    """

    def __init__(self, client: Optional[redis.Redis] = None, prefix: str = "classifier"):
        """
        Initialize redis store.

        Args:
            client: Redis client (default: pooled client from settings)
            prefix: Namespace prepended to every key
        """
        self.client = client or get_redis_client()
        self.prefix = prefix

    def _translate(self, action: str, key: str, error: redis.RedisError) -> StorageBackendError:
        if isinstance(error, redis.exceptions.ResponseError) and str(error).startswith("OOM"):
            return StorageQuotaError(f"Redis out of memory during {action} of '{key}': {error}")
        return StorageBackendError(f"Redis {action} of '{key}' failed: {error}")

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self.client.get(RedisKeys.namespaced(self.prefix, key))
        except redis.RedisError as e:
            raise self._translate("read", key, e) from e

    def set(self, key: str, value: bytes) -> None:
        try:
            self.client.set(RedisKeys.namespaced(self.prefix, key), value)
        except redis.RedisError as e:
            raise self._translate("write", key, e) from e

    def delete(self, key: str) -> bool:
        try:
            return bool(self.client.delete(RedisKeys.namespaced(self.prefix, key)))
        except redis.RedisError as e:
            raise self._translate("delete", key, e) from e

    def keys(self, prefix: str = "") -> List[str]:
        try:
            found = self.client.scan_iter(match=RedisKeys.pattern(self.prefix, prefix))
            return sorted(
                RedisKeys.strip(self.prefix, k.decode() if isinstance(k, bytes) else k)
                for k in found
            )
        except redis.RedisError as e:
            raise self._translate("scan", prefix, e) from e


def create_key_value_store(config: Optional[Settings] = None) -> KeyValueStore:
    """
    Build the backend selected in settings.

    Args:
        config: Settings instance (default: module settings)

    Returns:
        KeyValueStore implementation
    """
    config = config or default_settings

    if config.storage_backend == "memory":
        store = MemoryKeyValueStore(quota_bytes=config.storage_quota_bytes)
    elif config.storage_backend == "redis":
        store = RedisKeyValueStore(
            client=get_redis_client(config.redis_url), prefix=config.redis_key_prefix
        )
    else:
        store = FileKeyValueStore(config.storage_dir, quota_bytes=config.storage_quota_bytes)

    logger.info(f"Using {config.storage_backend} storage backend ({type(store).__name__})")
    return store
