"""
Unit tests for the in-process caches.

Tests TTLCache expiry and stats, QueryResultCache content keying and
invalidation, and the periodic CacheSweeper.
"""

import asyncio

import pytest

from dealchat.models.query import Query, QueryResult
from dealchat.utils.cache import CacheSweeper, QueryResultCache, TTLCache


class TestTTLCache:
    """Test suite for TTLCache."""

    @pytest.fixture
    def cache(self, fake_clock):
        return TTLCache(60, name="test_cache", clock=fake_clock)

    def test_set_and_get(self, cache):
        cache.set("acme", {"id": "001"})

        assert cache.get("acme") == {"id": "001"}
        assert "acme" in cache
        assert len(cache) == 1

    def test_miss(self, cache):
        assert cache.get("missing") is None
        assert "missing" not in cache

    def test_entry_fresh_until_ttl(self, cache, fake_clock):
        cache.set("acme", 1)
        fake_clock.advance(59.9)

        assert cache.get("acme") == 1

    def test_entry_expires_at_ttl(self, cache, fake_clock):
        """Test that an entry exactly ttl seconds old is treated as absent."""
        cache.set("acme", 1)
        fake_clock.advance(60)

        assert cache.get("acme") is None
        assert len(cache) == 0

    @pytest.mark.parametrize("elapsed,fresh", [(59.999, True), (60.001, False)])
    def test_ttl_boundary(self, cache, fake_clock, elapsed, fresh):
        """Test that an entry is served a millisecond before ttl and gone a millisecond after."""
        cache.set("acme", 1)
        fake_clock.advance(elapsed)

        assert (cache.get("acme") == 1) is fresh
        assert ("acme" in cache) is fresh

    def test_set_refreshes_timestamp(self, cache, fake_clock):
        cache.set("acme", 1)
        fake_clock.advance(40)
        cache.set("acme", 2)
        fake_clock.advance(40)

        assert cache.get("acme") == 2

    def test_delete(self, cache):
        cache.set("acme", 1)

        assert cache.delete("acme") is True
        assert cache.delete("acme") is False

    def test_cleanup_removes_only_expired(self, cache, fake_clock):
        cache.set("old", 1)
        fake_clock.advance(30)
        cache.set("new", 2)
        fake_clock.advance(30)

        assert cache.cleanup() == 1
        assert "new" in cache
        assert len(cache) == 1

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.clear() == 2
        assert len(cache) == 0

    def test_invalidate_by_key_or_source(self, cache):
        cache.set("opportunity:1", 1)
        cache.set("hash", 2, source="SELECT Id FROM Opportunity")
        cache.set("account:1", 3)

        assert cache.invalidate("Opportunity") == 1
        assert cache.invalidate("opportunity") == 1
        assert len(cache) == 1

    def test_invalidate_empty_pattern_is_noop(self, cache):
        cache.set("a", 1)

        assert cache.invalidate("") == 0
        assert len(cache) == 1

    def test_stats(self, cache, fake_clock):
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")
        fake_clock.advance(60)
        cache.get("a")

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 2
        assert stats["writes"] == 1
        assert stats["evictions"] == 1
        assert stats["size"] == 0
        assert stats["hit_rate"] == pytest.approx(1 / 3)

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError, match="ttl_seconds must be positive"):
            TTLCache(0)


class TestQueryResultCache:
    """Test suite for QueryResultCache."""

    @pytest.fixture
    def cache(self, fake_clock):
        return QueryResultCache(60, clock=fake_clock)

    @pytest.fixture
    def query(self):
        return Query(
            object_name="Opportunity",
            fields=("Id", "Name", "Amount"),
            conditions=("IsClosed = false",),
            limit=200,
        )

    def test_keyed_by_query_text(self, cache, query):
        result = QueryResult(total_size=1, records=[{"Id": "006A"}])
        cache.set(query, result)

        assert cache.get(query) is result
        assert cache.get(query.to_soql()) is result

    @pytest.mark.parametrize("elapsed,fresh", [(59.999, True), (60.001, False)])
    def test_result_ttl_boundary(self, cache, query, fake_clock, elapsed, fresh):
        cache.set(query, QueryResult(total_size=1, records=[{"Id": "006A"}]))
        fake_clock.advance(elapsed)

        assert (cache.get(query) is not None) is fresh

    def test_equal_queries_share_entry(self, cache, query):
        cache.set(query, QueryResult())
        twin = Query("Opportunity", ("Id", "Name", "Amount"), ("IsClosed = false",), limit=200)

        assert cache.get(twin) is not None

    def test_different_queries_do_not_collide(self, cache, query):
        cache.set(query, QueryResult())
        other = Query("Opportunity", ("Id",), ("IsClosed = true",), limit=200)

        assert cache.get(other) is None

    def test_invalidate_by_query_text(self, cache, query):
        cache.set(query, QueryResult())

        assert cache.invalidate("IsClosed = false") == 1
        assert cache.get(query) is None

    def test_key_is_content_hash(self, query):
        key = QueryResultCache.key_for(query)

        assert key == query.cache_key
        assert len(key) == 64

    def test_default_ttl(self):
        cache = QueryResultCache()

        assert cache.ttl_seconds == 60
        assert cache.name == "query_cache"


class TestCacheSweeper:
    """Test suite for CacheSweeper."""

    def test_sweep_cleans_every_cache(self, fake_clock):
        first = TTLCache(10, name="first", clock=fake_clock)
        second = TTLCache(100, name="second", clock=fake_clock)
        first.set("a", 1)
        second.set("b", 2)
        fake_clock.advance(50)

        sweeper = CacheSweeper([first, second], interval_seconds=5)

        assert sweeper.sweep() == 1
        assert len(first) == 0
        assert len(second) == 1

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            CacheSweeper([], interval_seconds=0)

    @pytest.mark.asyncio
    async def test_runs_periodically(self, fake_clock):
        cache = TTLCache(1, name="short", clock=fake_clock)
        cache.set("a", 1)
        fake_clock.advance(5)
        sweeper = CacheSweeper([cache], interval_seconds=0.01)

        sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert not sweeper.running
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_stop_safe(self):
        sweeper = CacheSweeper([], interval_seconds=60)

        await sweeper.stop()
        sweeper.start()
        task = sweeper._task
        sweeper.start()

        assert sweeper._task is task
        await sweeper.stop()
