"""
Redis read-through cache for review listings and review metadata.

Redis is ONLY a cache, never the source of truth.
Postgres is always authoritative.

Cache keys follow a clear naming pattern:
- {ns}:list:{product_id}:{page}:{count}:{sort}  - one page of reviews (TTL 1 hour)
- {ns}:meta:{product_id}                        - review metadata (TTL 1 hour)
- {ns}:index:{product_id}                       - set of every cached key for a product
- {ns}:generation:{product_id}                  - invalidation counter for a product

Redis has no wildcard DEL, so every cached key is recorded in its product's
index set and invalidation deletes exactly those keys. The generation counter
stops a reader that fetched from Postgres before a write from caching its
stale result after the write invalidated the product.

Every worker process talks to the same Redis, so an invalidation in one
process is visible to all of them.
"""

import json
from typing import Any, Dict, Optional

import redis

from reviews_api.config import Settings, settings
from reviews_api.structured_logger import StructuredLogger

logger = StructuredLogger("reviews.cache", log_level=settings.log_level)


def build_redis_client(config: Settings) -> redis.Redis:
    """
    Connection priority:
    1. REDIS_URL (redis:// or rediss:// for TLS)
    2. REDIS_HOST + REDIS_PORT + REDIS_DB
    """
    if config.redis_url:
        return redis.from_url(
            config.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
    return redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )


class ReviewCache:
    """
    Redis cache client for review payloads.

    Failures never propagate: reads degrade to a miss, writes and
    invalidations log and return False.

    Args:
        client: Redis client; built from settings when omitted
        ttl: Entry lifetime in seconds
        namespace: Key prefix
        enabled: When False every operation is a no-op (cache-less deployment)
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        ttl: Optional[int] = None,
        namespace: Optional[str] = None,
        enabled: Optional[bool] = None,
    ):
        self.client = client if client is not None else build_redis_client(settings)
        self.ttl = ttl if ttl is not None else settings.cache_ttl_seconds
        self.namespace = namespace or settings.cache_namespace
        self.enabled = settings.cache_enabled if enabled is None else enabled

    def _key(self, key: str) -> str:
        """Prefix key with namespace."""
        return f"{self.namespace}:{key}"

    def listing_key(self, product_id: int, page: int, count: int, sort: str) -> str:
        return self._key(f"list:{product_id}:{page}:{count}:{sort}")

    def meta_key(self, product_id: int) -> str:
        return self._key(f"meta:{product_id}")

    def _index_key(self, product_id: int) -> str:
        return self._key(f"index:{product_id}")

    def _generation_key(self, product_id: int) -> str:
        return self._key(f"generation:{product_id}")

    def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    #
    # Reads
    #

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Get a cached payload. Returns None on miss, on Redis errors and when disabled."""
        if not self.enabled:
            return None
        try:
            cached = self.client.get(key)
        except redis.RedisError as e:
            logger.warning("cache_read_failed", f"Cache read error for {key}: {e}", {"cache_key": key})
            return None
        if cached is None:
            return None
        try:
            return json.loads(cached)
        except ValueError as e:
            logger.warning("cache_decode_failed", f"Dropping undecodable entry {key}: {e}", {"cache_key": key})
            return None

    def generation(self, product_id: int) -> Optional[int]:
        """Current invalidation counter for a product; None when Redis is unavailable."""
        if not self.enabled:
            return 0
        try:
            return int(self.client.get(self._generation_key(product_id)) or 0)
        except redis.RedisError as e:
            logger.warning("cache_read_failed", f"Generation read error for product {product_id}: {e}")
            return None

    #
    # Writes
    #

    def set(self, key: str, product_id: int, payload: Dict[str, Any], generation: Optional[int]) -> bool:
        """
        Cache a payload for product_id and record it in the product's index.

        The write is skipped when the product's generation moved past
        `generation` (it was invalidated after the caller read the database).
        Returns True only when the payload was stored.
        """
        if not self.enabled or generation is None:
            return False

        serialized = json.dumps(payload)
        index_key = self._index_key(product_id)
        generation_key = self._generation_key(product_id)

        def _store(pipe) -> bool:
            current = int(pipe.get(generation_key) or 0)
            if current != generation:
                return False
            pipe.multi()
            pipe.setex(key, self.ttl, serialized)
            pipe.sadd(index_key, key)
            # The index must outlive every key it lists
            pipe.expire(index_key, self.ttl)
            return True

        try:
            stored = self.client.transaction(_store, generation_key, value_from_callable=True)
        except redis.RedisError as e:
            logger.warning("cache_write_failed", f"Cache write error for {key}: {e}", {"cache_key": key})
            return False

        if not stored:
            logger.debug("cache_write_skipped", f"Product {product_id} invalidated during fetch", {"cache_key": key})
        return bool(stored)

    #
    # Cache Invalidation
    #

    def invalidate_product(self, product_id: int) -> bool:
        """
        Make every cached listing and the metadata of a product unreachable.

        Deletes the indexed keys and bumps the generation in one MULTI/EXEC,
        retried if the index changes while it is being read.
        """
        if not self.enabled:
            return True

        index_key = self._index_key(product_id)
        generation_key = self._generation_key(product_id)
        meta_key = self.meta_key(product_id)

        def _drop(pipe) -> int:
            members = pipe.smembers(index_key)
            pipe.multi()
            pipe.incr(generation_key)
            pipe.delete(index_key, meta_key, *members)
            return len(members)

        try:
            dropped = self.client.transaction(_drop, index_key, value_from_callable=True)
        except redis.RedisError as e:
            logger.error(
                "cache_invalidation_failed",
                f"Cache invalidation error for product {product_id}: {e}",
                {"product_id": product_id},
            )
            return False

        logger.debug("cache_invalidated", f"Invalidated product {product_id}", {"keys": dropped})
        return True


# Global cache client instance (one per worker process)
cache_client = ReviewCache()


def get_cache() -> ReviewCache:
    """FastAPI dependency returning the process-wide cache client."""
    return cache_client
