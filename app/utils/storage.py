"""
Key-Value Storage Backends for consent records

Durable storage is Redis-based, with an in-memory fallback when Redis is not
configured or unreachable. Session-scoped storage wraps the signed Starlette
session so it dies with the browser session.

Every backend raises StorageError when a write cannot be completed.
"""

import logging
import time
from collections.abc import MutableMapping
from typing import Any, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.config import settings
from app.exceptions import StorageError

logger = logging.getLogger(__name__)


class KeyValueBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryBackend:
    """
    In-memory backend fallback when Redis is not available.
    Note: Records are lost on server restart and won't scale across instances.

    ``max_entries`` emulates a storage quota and ``disabled`` emulates storage
    turned off; both make writes fail with StorageError.
    """

    def __init__(self, max_entries: int | None = None, disabled: bool = False):
        self._data: dict[str, str] = {}
        self._expirations: dict[str, float] = {}
        self.max_entries = max_entries
        self.disabled = disabled

    def _cleanup_expired(self) -> None:
        now = time.monotonic()
        expired = [key for key, exp in self._expirations.items() if exp <= now]
        for key in expired:
            self._data.pop(key, None)
            self._expirations.pop(key, None)

    async def get(self, key: str) -> str | None:
        self._cleanup_expired()
        return self._data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if self.disabled:
            raise StorageError(operation="set")
        self._cleanup_expired()
        if self.max_entries is not None and key not in self._data and len(self._data) >= self.max_entries:
            raise StorageError(operation="set")

        self._data[key] = value
        if ttl_seconds is not None:
            self._expirations[key] = time.monotonic() + ttl_seconds
        else:
            self._expirations.pop(key, None)

    async def delete(self, key: str) -> None:
        if self.disabled:
            raise StorageError(operation="delete")
        self._data.pop(key, None)
        self._expirations.pop(key, None)

    def __len__(self) -> int:
        self._cleanup_expired()
        return len(self._data)


class RedisBackend:
    """Redis-backed durable storage."""

    def __init__(self, client: redis.Redis):
        self._redis = client

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError as e:
            raise StorageError(message=f"Failed to read consent record: {e}", operation="get") from e

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            await self._redis.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            logger.error(f"Redis write failed for {key}: {e}")
            raise StorageError(operation="set") from e

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as e:
            raise StorageError(operation="delete") from e

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()


class SessionBackend:
    """
    Session-scoped storage on top of ``request.session``.

    TTLs are ignored: the record lives exactly as long as the session cookie.
    """

    def __init__(self, session: MutableMapping[str, Any]):
        self._session = session

    async def get(self, key: str) -> str | None:
        value = self._session.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            self._session[key] = value
        except Exception as e:
            raise StorageError(operation="set") from e

    async def delete(self, key: str) -> None:
        try:
            self._session.pop(key, None)
        except Exception as e:
            raise StorageError(operation="delete") from e


async def create_durable_backend() -> KeyValueBackend:
    """Connect to Redis when configured, otherwise fall back to in-memory storage."""
    if not settings.redis_url:
        logger.info("Consent storage: using in-memory backend (REDIS_URL not set)")
        return InMemoryBackend()

    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        logger.info("Consent storage: connected to Redis")
        return RedisBackend(client)
    except (RedisError, OSError) as e:
        logger.warning(f"Consent storage: failed to connect to Redis: {e}. Using in-memory backend.")
        return InMemoryBackend()
