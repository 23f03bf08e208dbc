from __future__ import annotations

import contextlib
from typing import Iterator, List, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from accesstoken.storage.errors import StoreError

# SCAN batch size used when listing keys
_SCAN_COUNT = 500


@contextlib.contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Re-raise client failures as StoreError so callers never see redis types."""
    try:
        yield
    except RedisError as exc:
        raise StoreError(
            f"redis {operation} failed",
            {"operation": operation, "error_type": type(exc).__name__},
        ) from exc


def _normalize_pttl(value: int) -> Optional[int]:
    # PTTL returns -2 for a missing key and -1 for a key without expiry
    if value == -2:
        return None
    return int(value)


class RedisCache:
    """Thin async Redis wrapper implementing the session store contract."""

    # Default operation timeout for Redis commands
    DEFAULT_OPERATION_TIMEOUT = 5.0  # 5 seconds

    def __init__(
        self,
        redis_url: str,
        *,
        key_prefix: str = "",
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # Use a short-lived synchronous client to avoid binding the async client to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str) -> Optional[str]:
        with _store_errors("get"):
            return await self.client.get(self._key(key))

    async def set(self, key: str, value: str, *, px: int) -> None:
        with _store_errors("set"):
            await self.client.set(self._key(key), value, px=px)

    async def delete(self, key: str) -> int:
        with _store_errors("delete"):
            return int(await self.client.delete(self._key(key)))

    async def pexpire(self, key: str, ttl_ms: int) -> bool:
        with _store_errors("pexpire"):
            return bool(await self.client.pexpire(self._key(key), ttl_ms))

    async def pttl(self, key: str) -> Optional[int]:
        with _store_errors("pttl"):
            return _normalize_pttl(await self.client.pttl(self._key(key)))

    async def keys(self, pattern: str) -> List[str]:
        """Return raw keys matching ``pattern`` using incremental SCAN."""
        with _store_errors("scan"):
            return [key async for key in self.client.scan_iter(match=pattern, count=_SCAN_COUNT)]

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous Redis client internally to avoid event loop binding
    issues in pytest, but exposes async methods so they can be awaited
    uniformly like RedisCache.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0  # 5 seconds

    def __init__(
        self,
        redis_url: str,
        *,
        key_prefix: str = "",
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity."""
        self.client.ping()

    async def get(self, key: str) -> Optional[str]:
        with _store_errors("get"):
            return self.client.get(self._key(key))

    async def set(self, key: str, value: str, *, px: int) -> None:
        with _store_errors("set"):
            self.client.set(self._key(key), value, px=px)

    async def delete(self, key: str) -> int:
        with _store_errors("delete"):
            return int(self.client.delete(self._key(key)))

    async def pexpire(self, key: str, ttl_ms: int) -> bool:
        with _store_errors("pexpire"):
            return bool(self.client.pexpire(self._key(key), ttl_ms))

    async def pttl(self, key: str) -> Optional[int]:
        with _store_errors("pttl"):
            return _normalize_pttl(self.client.pttl(self._key(key)))

    async def keys(self, pattern: str) -> List[str]:
        with _store_errors("scan"):
            return list(self.client.scan_iter(match=pattern, count=_SCAN_COUNT))

    async def close(self) -> None:
        self.client.close()


__all__ = ["RedisCache", "SyncRedisCache"]
