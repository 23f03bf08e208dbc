"""Unit tests for the Redis-backed store using a mocked client."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from accesstoken.storage.errors import StoreError
from accesstoken.storage.redis_cache import RedisCache, SyncRedisCache


def async_cache(key_prefix=""):
    cache = RedisCache("redis://localhost:6379/0", key_prefix=key_prefix)
    cache.client = AsyncMock()
    return cache


def sync_cache(key_prefix=""):
    cache = SyncRedisCache("redis://localhost:6379/0", key_prefix=key_prefix)
    cache.client = MagicMock()
    return cache


class TestRedisCache:
    @pytest.mark.asyncio
    async def test_set_uses_millisecond_expiry(self):
        cache = async_cache("app:")

        await cache.set("acst:u1:a", "{}", px=1_500)

        cache.client.set.assert_awaited_once_with("app:acst:u1:a", "{}", px=1_500)

    @pytest.mark.asyncio
    async def test_pexpire_prefixes_key(self):
        cache = async_cache("app:")
        cache.client.pexpire.return_value = 1

        assert await cache.pexpire("acst:u1:a", 2_000) is True
        cache.client.pexpire.assert_awaited_once_with("app:acst:u1:a", 2_000)

    @pytest.mark.asyncio
    async def test_pttl_missing_key_is_none(self):
        cache = async_cache()
        cache.client.pttl.return_value = -2

        assert await cache.pttl("acst:u1:a") is None

        cache.client.pttl.return_value = 750
        assert await cache.pttl("acst:u1:a") == 750

    @pytest.mark.asyncio
    async def test_keys_returns_raw_scan_results(self):
        cache = async_cache("app:")

        async def scan_iter(match, count):
            assert match == "app:acst:u1:*"
            for key in ("app:acst:u1:a", "app:acst:u1:b"):
                yield key

        cache.client.scan_iter = scan_iter

        assert await cache.keys("app:acst:u1:*") == ["app:acst:u1:a", "app:acst:u1:b"]

    @pytest.mark.asyncio
    async def test_client_errors_become_store_errors(self):
        cache = async_cache()
        cache.client.get.side_effect = RedisConnectionError("refused")

        with pytest.raises(StoreError) as excinfo:
            await cache.get("acst:u1:a")

        assert excinfo.value.detail["operation"] == "get"
        assert isinstance(excinfo.value.__cause__, RedisConnectionError)


class TestSyncRedisCache:
    @pytest.mark.asyncio
    async def test_commands_are_prefixed(self):
        cache = sync_cache("app:")
        cache.client.get.return_value = "payload"
        cache.client.delete.return_value = 1

        assert await cache.get("acst:u1:a") == "payload"
        await cache.set("acst:u1:a", "payload", px=1_000)
        assert await cache.delete("acst:u1:a") == 1

        cache.client.get.assert_called_once_with("app:acst:u1:a")
        cache.client.set.assert_called_once_with("app:acst:u1:a", "payload", px=1_000)

    @pytest.mark.asyncio
    async def test_pexpire_errors_become_store_errors(self):
        cache = sync_cache()
        cache.client.pexpire.side_effect = RedisConnectionError("gone")

        with pytest.raises(StoreError):
            await cache.pexpire("acst:u1:a", 1_000)
