"""Key-value storage with expiry, the only contract sessions need from a cache.

Any store that can get bytes by key and set bytes with a TTL satisfies
KeyValueStore. Two implementations ship: an in-process dictionary for tests
and single-instance deployments, and Redis for everything else.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from threading import Lock

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal async get/set-with-TTL interface."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the stored value, or None when absent or expired."""
        ...

    @abstractmethod
    async def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        """Store a value that expires after ttl_seconds."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        ...

    async def close(self) -> None:
        """Release connections. Default implementation is a no-op."""
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """Dictionary-backed store with lazy expiry.

    Expired entries are removed when read or when purge_expired() runs.
    Thread-safe for concurrent access.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[bytes, float]] = {}
        self._lock = Lock()

    async def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    async def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def purge_expired(self) -> int:
        """Drop all expired entries. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, expires_at) in self._data.items() if now >= expires_at]
            for key in expired:
                del self._data[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired key(s)")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store using SETEX for sliding expiry.

    Redis errors propagate as redis.RedisError; SessionStore decides how to
    degrade.
    """

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(redis.from_url(url))

    async def get(self, key: str) -> bytes | None:
        value = await self._client.get(key)
        if value is None:
            return None
        return value.encode("utf-8") if isinstance(value, str) else value

    async def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        await self._client.setex(key, ttl_seconds, value)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def close(self) -> None:
        await self._client.aclose()
