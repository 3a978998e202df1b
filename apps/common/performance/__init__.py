"""
Performance module for the subscription platform

Namespaced caching with Redis support and graceful degradation.
"""

from .cache import (
    CACHE_TIMEOUT_LONG,
    CACHE_TIMEOUT_MEDIUM,
    CACHE_TIMEOUT_SHORT,
    DEFAULT_PATTERN_BATCH_SIZE,
    CacheService,
)

__all__ = [
    "CACHE_TIMEOUT_LONG",
    "CACHE_TIMEOUT_MEDIUM",
    "CACHE_TIMEOUT_SHORT",
    "DEFAULT_PATTERN_BATCH_SIZE",
    "CacheService",
]
