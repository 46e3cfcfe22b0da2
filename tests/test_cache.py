"""
Tests for the review cache: key construction, TTL, per-product invalidation,
the generation guard against stale repopulation, and degraded operation when
Redis fails.
"""

from unittest.mock import MagicMock

import fakeredis
import pytest
import redis

from reviews_api.cache import ReviewCache


# ── Key construction ─────────────────────────────────────────────────────

class TestKeys:
    def test_listing_key_covers_every_parameter(self, cache):
        base = cache.listing_key(1, 1, 5, "newest")
        assert base == "reviews:list:1:1:5:newest"
        assert cache.listing_key(2, 1, 5, "newest") != base
        assert cache.listing_key(1, 2, 5, "newest") != base
        assert cache.listing_key(1, 1, 10, "newest") != base
        assert cache.listing_key(1, 1, 5, "helpful") != base

    def test_no_collision_between_page_and_count(self, cache):
        assert cache.listing_key(1, 11, 5, "newest") != cache.listing_key(1, 1, 15, "newest")

    def test_meta_key_is_product_scoped(self, cache):
        assert cache.meta_key(7) == "reviews:meta:7"
        assert cache.meta_key(7) != cache.meta_key(8)

    def test_namespace_prefix(self, redis_client):
        c = ReviewCache(client=redis_client, namespace="staging", enabled=True)
        assert c.meta_key(1) == "staging:meta:1"


# ── Read/write ───────────────────────────────────────────────────────────

class TestReadWrite:
    def test_set_and_get(self, cache):
        key = cache.listing_key(1, 1, 5, "newest")
        payload = {"product": "1", "page": 0, "count": 5, "results": []}
        assert cache.set(key, 1, payload, cache.generation(1))
        assert cache.get(key) == payload

    def test_miss_returns_none(self, cache):
        assert cache.get(cache.meta_key(404)) is None

    def test_entries_expire_after_ttl(self, cache, redis_client):
        key = cache.meta_key(1)
        cache.set(key, 1, {"product_id": "1"}, cache.generation(1))
        ttl = redis_client.ttl(key)
        assert 3590 < ttl <= 3600

    def test_set_records_key_in_product_index(self, cache, redis_client):
        key = cache.listing_key(3, 1, 5, "newest")
        cache.set(key, 3, {"results": []}, cache.generation(3))
        assert key in redis_client.smembers("reviews:index:3")

    def test_undecodable_entry_is_a_miss(self, cache, redis_client):
        key = cache.meta_key(1)
        redis_client.set(key, "{not json")
        assert cache.get(key) is None


# ── Invalidation ─────────────────────────────────────────────────────────

class TestInvalidation:
    def test_invalidate_drops_every_listing_and_meta(self, cache):
        keys = [
            cache.listing_key(1, 1, 5, "newest"),
            cache.listing_key(1, 2, 5, "newest"),
            cache.listing_key(1, 1, 10, "helpful"),
            cache.meta_key(1),
        ]
        for key in keys:
            cache.set(key, 1, {"k": key}, cache.generation(1))
        assert all(cache.get(key) is not None for key in keys)

        assert cache.invalidate_product(1)

        assert all(cache.get(key) is None for key in keys)

    def test_invalidate_leaves_other_products_alone(self, cache):
        mine = cache.listing_key(1, 1, 5, "newest")
        other = cache.listing_key(2, 1, 5, "newest")
        cache.set(mine, 1, {"p": 1}, cache.generation(1))
        cache.set(other, 2, {"p": 2}, cache.generation(2))

        cache.invalidate_product(1)

        assert cache.get(mine) is None
        assert cache.get(other) == {"p": 2}

    def test_invalidate_with_nothing_cached(self, cache):
        assert cache.invalidate_product(12345)

    def test_invalidate_bumps_generation(self, cache):
        before = cache.generation(1)
        cache.invalidate_product(1)
        assert cache.generation(1) == before + 1

    def test_stale_reader_cannot_repopulate(self, cache):
        """A reader that fetched before a write must not cache its result after it."""
        key = cache.listing_key(1, 1, 5, "newest")
        generation = cache.generation(1)

        cache.invalidate_product(1)  # a write lands while the reader is querying

        assert cache.set(key, 1, {"stale": True}, generation) is False
        assert cache.get(key) is None

    def test_index_shared_across_clients_on_same_server(self):
        """Invalidation from one process is visible to every other process."""
        server = fakeredis.FakeServer()
        worker_a = ReviewCache(client=fakeredis.FakeRedis(server=server, decode_responses=True), enabled=True)
        worker_b = ReviewCache(client=fakeredis.FakeRedis(server=server, decode_responses=True), enabled=True)

        key = worker_a.meta_key(5)
        worker_a.set(key, 5, {"product_id": "5"}, worker_a.generation(5))
        assert worker_b.get(key) == {"product_id": "5"}

        worker_b.invalidate_product(5)
        assert worker_a.get(key) is None


# ── Disabled and degraded operation ──────────────────────────────────────

class TestDisabled:
    def test_disabled_cache_never_stores(self, redis_client):
        c = ReviewCache(client=redis_client, enabled=False)
        key = c.meta_key(1)
        assert c.set(key, 1, {"x": 1}, c.generation(1)) is False
        assert c.get(key) is None
        assert redis_client.keys("*") == []
        assert c.invalidate_product(1) is True


class TestRedisFailures:
    @pytest.fixture
    def broken_cache(self):
        client = MagicMock(spec=redis.Redis)
        client.get.side_effect = redis.ConnectionError("connection refused")
        client.transaction.side_effect = redis.ConnectionError("connection refused")
        client.ping.side_effect = redis.ConnectionError("connection refused")
        return ReviewCache(client=client, enabled=True)

    def test_get_degrades_to_miss(self, broken_cache):
        assert broken_cache.get(broken_cache.meta_key(1)) is None

    def test_generation_unknown(self, broken_cache):
        assert broken_cache.generation(1) is None

    def test_set_reports_failure(self, broken_cache):
        assert broken_cache.set(broken_cache.meta_key(1), 1, {}, 0) is False

    def test_invalidate_reports_failure(self, broken_cache):
        assert broken_cache.invalidate_product(1) is False

    def test_ping_false(self, broken_cache):
        assert broken_cache.ping() is False
