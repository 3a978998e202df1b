"""
Caching utilities for the subscription platform

Provides a namespaced, TTL-aware cache on top of the Django cache framework:
- Redis (django-redis) in production, with cursor-based pattern deletion
- Local memory cache for tests and single-instance development
- Fail-open semantics: a broken cache backend degrades to cache misses
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any, TypeVar, cast

from django.core.cache import caches

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Cache timeout constants (seconds)
CACHE_TIMEOUT_SHORT = 60  # 1 minute
CACHE_TIMEOUT_MEDIUM = 300  # 5 minutes
CACHE_TIMEOUT_LONG = 3600  # 1 hour

# Keys deleted per round-trip during pattern deletion
DEFAULT_PATTERN_BATCH_SIZE = 100


class CacheService:
    """
    Namespaced cache service.

    Every instance is bound to a key prefix (e.g. ``subscription:plans:``) so
    logical caches sharing one backend never collide. Reads never raise: a
    backend failure is logged and reported as a miss. Writes and deletes are
    best-effort and report success as a boolean.
    """

    def __init__(self, namespace: str, cache_alias: str = "default") -> None:
        self.namespace = namespace
        self._cache = caches[cache_alias]

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value from cache, treating backend errors as a miss."""
        full_key = self._make_key(key)
        try:
            value = self._cache.get(full_key)
        except Exception as e:
            logger.warning("Cache GET failed for %s: %s", full_key, e)
            return default

        if value is None:
            logger.debug("Cache MISS: %s", full_key)
            return default

        logger.debug("Cache HIT: %s", full_key)
        return value

    def set(self, key: str, value: Any, timeout: int = CACHE_TIMEOUT_MEDIUM) -> bool:
        """Set a value in cache with automatic key prefixing."""
        full_key = self._make_key(key)
        try:
            self._cache.set(full_key, value, timeout)
            logger.debug("Cache SET: %s (timeout=%ss)", full_key, timeout)
            return True
        except Exception as e:
            logger.warning("Cache SET failed for %s: %s", full_key, e)
            return False

    def delete(self, key: str) -> bool:
        """Delete a value from cache."""
        full_key = self._make_key(key)
        try:
            self._cache.delete(full_key)
            logger.debug("Cache DELETE: %s", full_key)
            return True
        except Exception as e:
            logger.warning("Cache DELETE failed for %s: %s", full_key, e)
            return False

    def delete_many(self, keys: Iterable[str]) -> bool:
        """Delete several keys of this namespace in one round-trip."""
        full_keys = [self._make_key(key) for key in keys]
        if not full_keys:
            return True
        try:
            self._cache.delete_many(full_keys)
            return True
        except Exception as e:
            logger.warning("Cache DELETE_MANY failed for %d keys: %s", len(full_keys), e)
            return False

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], T],
        timeout: int = CACHE_TIMEOUT_MEDIUM,
    ) -> T:
        """Get from cache or compute and cache the value."""
        value = self.get(key)
        if value is None:
            value = factory()
            if value is not None:
                self.set(key, value, timeout)
        return cast(T, value)

    def delete_pattern(self, pattern: str, batch_size: int = DEFAULT_PATTERN_BATCH_SIZE) -> int:
        """
        Delete all keys of this namespace matching a glob pattern.

        Keys are enumerated with the backend's cursor-based scan (django-redis
        ``iter_keys``) and removed in batches of ``batch_size`` so the backend
        is never blocked by a full keyspace scan. Backends without a scan API
        delete nothing. Returns the number of keys deleted.
        """
        iter_keys = getattr(self._cache, "iter_keys", None)
        if iter_keys is None:
            logger.debug("Cache backend has no key scan, skipping pattern delete: %s", pattern)
            return 0

        batch_size = max(1, batch_size)
        full_pattern = self._make_key(pattern)
        deleted = 0
        batch: list[str] = []
        try:
            for full_key in iter_keys(full_pattern, itersize=batch_size):
                batch.append(full_key)
                if len(batch) >= batch_size:
                    self._cache.delete_many(batch)
                    deleted += len(batch)
                    batch = []
            if batch:
                self._cache.delete_many(batch)
                deleted += len(batch)
        except Exception as e:
            logger.warning("Pattern delete failed for %s after %d keys: %s", full_pattern, deleted, e)
            return deleted

        logger.debug("Cache DELETE PATTERN: %s (%d keys)", full_pattern, deleted)
        return deleted

    def _make_key(self, key: str) -> str:
        return f"{self.namespace}{key}"
