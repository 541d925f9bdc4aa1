import pytest

from playbridge.infrastructure.http.cache import (
    InMemoryStore,
    compute_cache_key,
    deserialize_cached_response,
    serialize_cached_response,
    should_cache,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestInMemoryStore:
    """Tests for the in-process keyed store."""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = InMemoryStore(max_size=2, default_ttl_ms=1000, clock=self.clock)

    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        await self.store.set("a", "1")
        assert await self.store.get("a") == "1"

        await self.store.delete("a")
        assert await self.store.get("a") is None

    @pytest.mark.asyncio
    async def test_entries_expire(self):
        await self.store.set("a", "1", ttl_ms=100)
        self.clock.now = 100

        assert await self.store.get("a") is None
        assert self.store.get_stats()["evictions"] == 1

    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        await self.store.set("a", "1")
        await self.store.set("b", "2")
        await self.store.get("a")
        await self.store.set("c", "3")

        assert await self.store.get("b") is None
        assert await self.store.get("a") == "1"
        assert await self.store.get("c") == "3"
        assert len(self.store) == 2

    @pytest.mark.asyncio
    async def test_stats(self):
        await self.store.set("a", "1")
        await self.store.get("a")
        await self.store.get("missing")

        assert self.store.get_stats() == {"hits": 1, "misses": 1, "evictions": 0}
        self.store.reset_stats()
        assert self.store.get_stats() == {"hits": 0, "misses": 0, "evictions": 0}

    @pytest.mark.asyncio
    async def test_clear(self):
        await self.store.set("a", "1")
        await self.store.clear()
        assert len(self.store) == 0


class TestCacheHelpers:
    """Tests for HTTP response cache helpers."""

    def test_cache_key_depends_on_user(self):
        url = "https://api.test/playlists/1"
        assert compute_cache_key("get", url) == compute_cache_key("GET", url)
        assert compute_cache_key("GET", url, "u1") != compute_cache_key("GET", url, "u2")
        assert compute_cache_key("GET", url).startswith("http:")

    @pytest.mark.parametrize("method, status, expected", [
        ("GET", 200, True),
        ("GET", 204, True),
        ("GET", 404, False),
        ("POST", 200, False),
    ])
    def test_should_cache(self, method, status, expected):
        assert should_cache(method, status) is expected

    def test_serialized_response(self):
        value = serialize_cached_response(200, {"content-type": "application/json"}, {"id": 1})
        assert deserialize_cached_response(value)["body"] == {"id": 1}
