"""
LRU cache with TTL for search results and query contexts.

Keys are derived from the normalized query plus the optional intent and
category, so two spellings of the same question share one entry.
Population is driven from outside the scoring code through the
cached_pipeline decorator.
"""

import functools
import hashlib
import threading
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from issa.core.logging import logger
from issa.core.tracing import MetricsCollector

T = TypeVar("T")

_METRIC_PREFIX = "rag.retrieval.cache"


class ResultCache:
    """
    LRU (Least Recently Used) cache with per-entry expiry.

    Concurrent queries read and populate it, so every access to the
    ordered map happens under one lock. Expiry is checked on read.
    """

    def __init__(self, max_size: int = 1000, ttl: int = 3600):
        """
        Initialize cache.

        Args:
            max_size: Maximum number of cached keys
            ttl: Time to live in seconds (default 1 hour)
        """
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if ttl <= 0:
            raise ValueError("ttl must be > 0")

        self.max_size = max_size
        self.ttl = ttl
        self._cache: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self.metrics = MetricsCollector()

        logger.info("ResultCache initialized", max_size=max_size, ttl=ttl)

    @staticmethod
    def make_key(
        normalized_query: str,
        intent: Optional[str] = None,
        category: Optional[str] = None,
        namespace: str = "search",
    ) -> str:
        """
        Deterministic cache key.

        Returns:
            MD5 hash of namespace, query, intent and category
        """
        cache_input = f"{namespace}|{normalized_query}|{intent or ''}|{category or ''}"
        return hashlib.md5(cache_input.encode("utf-8")).hexdigest()

    def get(self, key: str) -> Optional[Any]:
        """
        Cached value for key.

        Returns:
            The value, or None if absent or expired
        """
        with self._lock:
            item = self._cache.get(key)
            if item is None:
                self.metrics.increment(f"{_METRIC_PREFIX}.misses")
                return None

            value, stored_at = item
            if time.monotonic() - stored_at > self.ttl:
                del self._cache[key]
                self.metrics.increment(f"{_METRIC_PREFIX}.misses")
                self.metrics.increment(f"{_METRIC_PREFIX}.expirations")
                logger.debug("Cache entry expired", key=key)
                return None

            self._cache.move_to_end(key)
            self.metrics.increment(f"{_METRIC_PREFIX}.hits")

        logger.debug("Cache hit", key=key)
        return value

    def set(self, key: str, value: Any) -> None:
        """Store value, evicting the least recently used key when full."""
        with self._lock:
            self._cache[key] = (value, time.monotonic())
            self._cache.move_to_end(key)

            while len(self._cache) > self.max_size:
                self._cache.popitem(last=False)
                self.metrics.increment(f"{_METRIC_PREFIX}.evictions")

            size = len(self._cache)
            self.metrics.gauge(f"{_METRIC_PREFIX}.size", size)

        logger.debug("Cached value", key=key, cache_size=size)

    def clear(self) -> int:
        """Clear entire cache. Returns the number of removed keys."""
        with self._lock:
            size = len(self._cache)
            self._cache.clear()
        self.metrics.increment(f"{_METRIC_PREFIX}.clears")
        self.metrics.gauge(f"{_METRIC_PREFIX}.size", 0)
        logger.info("Cleared cache", entries_removed=size)
        return size

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_hit_rate(self) -> float:
        """
        Calculate cache hit rate.

        Returns:
            Hit rate between 0.0 and 1.0
        """
        metrics = self.metrics.get_metrics()
        hits = metrics.get(f"{_METRIC_PREFIX}.hits", 0)
        misses = metrics.get(f"{_METRIC_PREFIX}.misses", 0)
        total = hits + misses
        if total == 0:
            return 0.0
        return hits / total

    def get_stats(self) -> Dict[str, Any]:
        metrics = self.metrics.get_metrics()
        with self._lock:
            size = len(self._cache)
        return {
            "keys": size,
            "size": size,
            "max_size": self.max_size,
            "hits": int(metrics.get(f"{_METRIC_PREFIX}.hits", 0)),
            "misses": int(metrics.get(f"{_METRIC_PREFIX}.misses", 0)),
            "hit_rate": self.get_hit_rate(),
            "ttl": self.ttl,
            "evictions": int(metrics.get(f"{_METRIC_PREFIX}.evictions", 0)),
            "expirations": int(metrics.get(f"{_METRIC_PREFIX}.expirations", 0)),
        }


def cached_pipeline(
    cache: ResultCache, key_builder: Callable[..., Optional[str]]
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Wrap an async pipeline with check-before-compute / store-after-compute.

    key_builder receives the same arguments as the pipeline; returning
    None bypasses the cache for that call.

    Usage:
        rank = cached_pipeline(cache, lambda q, analysis: cache.make_key(...))(rank)
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            key = key_builder(*args, **kwargs)
            if key is not None:
                cached = cache.get(key)
                if cached is not None:
                    return cached

            result = await func(*args, **kwargs)

            if key is not None and result is not None:
                cache.set(key, result)
            return result

        return wrapper

    return decorator
