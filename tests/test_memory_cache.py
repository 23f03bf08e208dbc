import pytest

from accesstoken.storage.common import escape_glob, glob_to_regex
from accesstoken.storage.memory import MemoryCache


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


class TestMemoryCacheExpiry:
    @pytest.mark.asyncio
    async def test_value_expires_after_px(self, cache, clock):
        await cache.set("k", "v", px=1_000)

        clock.advance(999)
        assert await cache.get("k") == "v"
        clock.advance(1)
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_pttl_reports_remaining_ms(self, cache, clock):
        await cache.set("k", "v", px=1_000)
        clock.advance(250)

        assert await cache.pttl("k") == 750
        assert await cache.pttl("missing") is None

    @pytest.mark.asyncio
    async def test_pexpire_extends_live_key_only(self, cache, clock):
        await cache.set("k", "v", px=1_000)
        clock.advance(900)

        assert await cache.pexpire("k", 1_000) is True
        assert await cache.pttl("k") == 1_000
        assert await cache.pexpire("missing", 1_000) is False
        assert await cache.get("missing") is None

    @pytest.mark.asyncio
    async def test_pexpire_on_expired_key_fails(self, cache, clock):
        await cache.set("k", "v", px=100)
        clock.advance(100)

        assert await cache.pexpire("k", 1_000) is False

    @pytest.mark.asyncio
    async def test_set_requires_positive_ttl(self, cache):
        with pytest.raises(ValueError):
            await cache.set("k", "v", px=0)

    @pytest.mark.asyncio
    async def test_delete_reports_existence(self, cache):
        await cache.set("k", "v", px=1_000)

        assert await cache.delete("k") == 1
        assert await cache.delete("k") == 0


class TestMemoryCacheKeys:
    @pytest.mark.asyncio
    async def test_namespace_applies_to_commands_not_keys(self, clock):
        cache = MemoryCache(key_prefix="app:", clock=clock)
        await cache.set("acst:u1:a", "v", px=1_000)

        assert await cache.get("acst:u1:a") == "v"
        assert await cache.keys("app:acst:u1:*") == ["app:acst:u1:a"]
        assert await cache.keys("acst:u1:*") == []

    @pytest.mark.asyncio
    async def test_keys_skips_expired_entries(self, cache, clock):
        await cache.set("a", "1", px=100)
        await cache.set("b", "2", px=1_000)
        clock.advance(100)

        assert await cache.keys("*") == ["b"]


class TestGlobHelpers:
    def test_escape_glob_makes_metacharacters_literal(self):
        pattern = glob_to_regex(escape_glob("a*b?[c]") + "*")

        assert pattern.match("a*b?[c]tail")
        assert not pattern.match("axxb?[c]tail")
        assert not pattern.match("a*bx[c]")

    def test_escape_glob_keeps_backslash_literal(self):
        escaped = escape_glob("dom\\alice:")

        assert escaped == "dom[\\\\]alice:"
        pattern = glob_to_regex(escaped + "*")
        assert pattern.match("dom\\alice:abc")
        assert not pattern.match("domalice:abc")
        assert not pattern.match("dom\\\\alice:abc")

    def test_glob_to_regex_wildcards(self):
        assert glob_to_regex("acst:u1:*").match("acst:u1:abc")
        assert not glob_to_regex("acst:u1:*").match("acst:u10:abc")
        assert glob_to_regex("h?llo").match("hello")
        assert glob_to_regex("h[ae]llo").match("hallo")
        assert not glob_to_regex("h[^e]llo").match("hello")
        assert glob_to_regex("h[a-c]llo").match("hbllo")

    def test_escaped_characters(self):
        assert glob_to_regex(r"a\*").match("a*")
        assert not glob_to_regex(r"a\*").match("ab")
