"""
Query Embedding Cache for Knowledge-RAG

Caches question embeddings so repeated questions skip the provider call.
Supports multiple backends:
- In-memory TTL + LRU cache (default, no dependencies)
- Redis (optional, for distributed caching)

Keys are normalized query strings (case-folded, whitespace collapsed). The
cache is derived state: losing it only costs provider calls.
"""

import asyncio
import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


def normalize_query(text: str) -> str:
    """Case-fold, trim and collapse internal whitespace."""
    return " ".join(text.casefold().split())


@dataclass
class CacheStats:
    """Statistics for embedding cache operations."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def reset(self) -> None:
        """Reset all statistics."""
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0


class EmbeddingCacheBackend(ABC):
    """Abstract base class for embedding cache backends."""

    stats: CacheStats

    @abstractmethod
    async def get(self, key: str) -> Optional[List[float]]:
        """Get embedding from cache by key."""
        pass

    @abstractmethod
    async def set(self, key: str, embedding: List[float], ttl_seconds: Optional[int] = None) -> None:
        """Store embedding in cache."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete embedding from cache."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Clear all cached embeddings."""
        pass

    @abstractmethod
    async def purge_expired(self) -> int:
        """Drop expired entries, returning how many were removed."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close cache connection."""
        pass


class InMemoryEmbeddingCache(EmbeddingCacheBackend):
    """
    In-memory TTL + LRU cache for query embeddings.

    A hit moves the entry to the most-recent end without refreshing its
    TTL. Expired entries are removed on read and by purge_expired(); they
    are never returned.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize in-memory cache.

        Args:
            max_size: Maximum number of embeddings to cache
            default_ttl: Default TTL in seconds
            clock: Monotonic time source (injectable for tests)
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._cache: "OrderedDict[str, Tuple[List[float], float]]" = OrderedDict()
        self.stats = CacheStats()

    async def get(self, key: str) -> Optional[List[float]]:
        """Get embedding from cache."""
        entry = self._cache.get(key)
        if entry is None:
            self.stats.misses += 1
            return None

        embedding, expires_at = entry
        if expires_at <= self._clock():
            del self._cache[key]
            self.stats.expirations += 1
            self.stats.misses += 1
            return None

        self._cache.move_to_end(key)
        self.stats.hits += 1
        return embedding

    async def set(self, key: str, embedding: List[float], ttl_seconds: Optional[int] = None) -> None:
        """Store embedding in cache, evicting least recently used entries."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        self._cache[key] = (embedding, self._clock() + ttl)
        self._cache.move_to_end(key)

        while len(self._cache) > self.max_size:
            self._cache.popitem(last=False)
            self.stats.evictions += 1

    async def delete(self, key: str) -> bool:
        """Delete embedding from cache."""
        return self._cache.pop(key, None) is not None

    async def clear(self) -> None:
        """Clear all cached embeddings."""
        self._cache.clear()
        self.stats.reset()

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._cache.items() if expires_at <= now]
        for key in expired:
            del self._cache[key]
        self.stats.expirations += len(expired)
        return len(expired)

    async def close(self) -> None:
        """Close cache (no-op for in-memory)."""
        pass

    def __len__(self) -> int:
        """Return number of cached embeddings."""
        return len(self._cache)


class RedisEmbeddingCache(EmbeddingCacheBackend):
    """
    Redis-backed query embedding cache.

    Shares cached embeddings across API replicas. Expiry is delegated to
    Redis (SETEX), so purge_expired() has nothing to do.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "qemb:",
        default_ttl: int = 3600,
    ):
        """
        Initialize Redis cache.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for all cache keys
            default_ttl: Default TTL in seconds
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.default_ttl = default_ttl
        self._redis = None
        self.stats = CacheStats()

    async def _get_redis(self):
        """Lazy initialize Redis connection."""
        if self._redis is None:
            try:
                import redis.asyncio as redis
            except ImportError as e:
                raise RuntimeError(
                    "redis package required for Redis cache: pip install 'knowledge-rag[redis]'"
                ) from e
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _make_key(self, key: str) -> str:
        """Create full Redis key with prefix."""
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return f"{self.key_prefix}{digest}"

    async def get(self, key: str) -> Optional[List[float]]:
        """Get embedding from Redis."""
        redis = await self._get_redis()
        data = await redis.get(self._make_key(key))
        if data:
            self.stats.hits += 1
            return json.loads(data)

        self.stats.misses += 1
        return None

    async def set(self, key: str, embedding: List[float], ttl_seconds: Optional[int] = None) -> None:
        """Store embedding in Redis."""
        redis = await self._get_redis()
        ttl = ttl_seconds or self.default_ttl
        await redis.setex(self._make_key(key), ttl, json.dumps(embedding))

    async def delete(self, key: str) -> bool:
        """Delete embedding from Redis."""
        redis = await self._get_redis()
        result = await redis.delete(self._make_key(key))
        return result > 0

    async def clear(self) -> None:
        """Clear all cached embeddings with prefix."""
        redis = await self._get_redis()

        cursor = 0
        while True:
            cursor, keys = await redis.scan(cursor, match=f"{self.key_prefix}*", count=1000)
            if keys:
                await redis.delete(*keys)
            if cursor == 0:
                break

        self.stats.reset()

    async def purge_expired(self) -> int:
        return 0

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None


class QueryEmbedder(Protocol):
    async def embed_text(self, text: str) -> List[float]:
        ...


class QueryEmbeddingCache:
    """
    Read-through cache in front of the embedding provider.

    Usage:
        cache = QueryEmbeddingCache(embedder)
        await cache.start()
        vector = await cache.get_or_embed("¿Cuál es el límite de velocidad?")
        await cache.close()

    Concurrent misses for the same query may both call the provider; the
    last write wins.
    """

    def __init__(
        self,
        embedder: QueryEmbedder,
        backend: Optional[EmbeddingCacheBackend] = None,
        enabled: bool = True,
        sweep_interval: float = 60.0,
    ):
        """
        Initialize query embedding cache.

        Args:
            embedder: Provider used on cache misses
            backend: Cache backend (defaults to in-memory)
            enabled: Whether caching is enabled
            sweep_interval: Seconds between expired-entry sweeps
        """
        self.embedder = embedder
        self.backend = backend or InMemoryEmbeddingCache()
        self.enabled = enabled
        self.sweep_interval = sweep_interval
        self._sweep_task: Optional["asyncio.Task[None]"] = None

    async def get_or_embed(self, query: str) -> List[float]:
        """Return the cached embedding for a query, embedding it on a miss."""
        if not self.enabled:
            return await self.embedder.embed_text(query)

        key = normalize_query(query)
        cached = await self.backend.get(key)
        if cached is not None:
            return cached

        embedding = await self.embedder.embed_text(query)
        await self.backend.set(key, embedding)
        return embedding

    async def start(self) -> None:
        """Start the periodic expired-entry sweep."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                purged = await self.backend.purge_expired()
            except Exception as e:
                logger.warning(f"Query cache sweep failed: {e}")
                continue
            if purged:
                logger.debug(f"Query cache sweep removed {purged} expired entries")

    @property
    def stats(self) -> CacheStats:
        """Get cache statistics."""
        return self.backend.stats

    async def clear(self) -> None:
        """Clear all cached embeddings."""
        await self.backend.clear()

    async def close(self) -> None:
        """Stop the sweep task and close the backend."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.backend.close()


def build_backend(
    backend: str = "memory",
    max_size: int = 1000,
    ttl: int = 3600,
    redis_url: str = "redis://localhost:6379",
) -> EmbeddingCacheBackend:
    """Create a cache backend by name."""
    if backend == "redis":
        return RedisEmbeddingCache(redis_url=redis_url, default_ttl=ttl)
    return InMemoryEmbeddingCache(max_size=max_size, default_ttl=ttl)
